"""
Webcam capture surface for the scanner.
Owns the camera handle, serves the MJPEG preview and produces still frames on demand.
"""

from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import base64
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import numpy as np

# Optional deps
try:
    import cv2  # type: ignore
except Exception:
    cv2 = None

from ..config import CameraSettings
from ..errors import CaptureUnavailable


logger = logging.getLogger("webcam_service")

_PLACEHOLDER_JPEG = base64.b64decode(
    b"/9j/4AAQSkZJRgABAQAAAQABAAD/2wBDAAgGBgcGBQgHBwcJCQgKDBQNDAsLDBkSEw8UHRofHh0aHBwgJC4nICIsIxwcKDcpLDAxNDQ0Hyc5PTgyPC4zNDL/2wBDAQkJCQwLDBgNDRgyIRwhMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjIyMjL/wAARCAABAAEDASIAAhEBAxEB/8QAHwAAAQUBAQEBAQEAAAAAAAAAAAECAwQFBgcICQoL/8QAtRAAAgEDAwIEAwUFBAQAAAF9AQIDAAQRBRIhMUEGE1FhByJxFDKBkaEII0KxwRVS0fAkM2JyggkKFhcYGRolJicoKSo0NTY3ODk6Q0RFRkdISUpTVFVWV1hZWmNkZWZnaGlqc3R1dnd4eXqDhIWGh4iJipKTlJWWl5iZmqKjpKWmp6ipqrKztLW2t7i5usLDxMXGx8jJytLT1NXW19jZ2uHi4+Tl5ufo6erx8vP09fb3+Pn6/8QAHwEAAwEBAQEBAQEBAQAAAAAAAAECAwQFBgcICQoL/8QAtREAAgECBAQDBAcFBAQAAQJ3AAECAxEEBSExBhJBUQdhcRMiMoEIFEKRobHBCSMzUvAVYnLRChYkNOEl8RcYGRomJygpKjU2Nzg5OkNERUZHSElKU1RVVldYWVpjZGVmZ2hpanN0dXZ3eHl6goOEhYaHiImKkpOUlZaXmJmaoqOkpaanqKmqsrO0tba3uLm6wsPExcbHyMnK0tPU1dbX2Nna4uPk5ebn6Onq8vP09fb3+Pn6/9oADAMBAAIRAxEAPwD5/ooooA//2Q=="
)


class WebcamService:
    """Camera handle owner: preview stream plus on-demand still capture."""

    def __init__(self, settings: Optional[CameraSettings] = None):
        self.settings = settings or CameraSettings()
        self.camera_id = self.settings.camera_id
        self.enable_hardware = cv2 is not None
        self._cap = None
        self._active = False
        self._lock = asyncio.Lock()
        self._preview_subscribers: list[asyncio.Queue[bytes]] = []
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> None:
        """Start the preview loop and open the camera."""
        if self._loop_task:
            return
        if not self.enable_hardware:
            logger.warning("OpenCV not available - webcam disabled")
            return

        await self.set_active(True)
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._preview_loop(), name="webcam-preview-loop")
        logger.info("Webcam service started")

    async def stop(self) -> None:
        """Stop the preview loop and release the camera."""
        if self._loop_task:
            self._stop_event.set()
            await self._loop_task
            self._loop_task = None

        async with self._lock:
            await self._deactivate_locked()

        logger.info("Webcam service stopped")

    @asynccontextmanager
    async def acquired(self) -> AsyncIterator["WebcamService"]:
        """Hold the camera for the duration of the block; always released on exit."""
        await self.set_active(True)
        try:
            yield self
        finally:
            await self.set_active(False)

    async def _activate_locked(self) -> None:
        """Activate webcam (must be called with lock held)."""
        if self._active:
            return
        if not self.enable_hardware:
            logger.warning("Cannot open webcam - OpenCV not available")
            return

        logger.info(f"Opening webcam (camera_id={self.camera_id})")

        cap = cv2.VideoCapture(self.camera_id)
        if not cap.isOpened():
            logger.error(f"Failed to open webcam {self.camera_id}")
            cap.release()
            return

        # Ask for a high resolution; the driver picks the closest supported mode
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)

        self._cap = cap
        self._active = True
        logger.info("Webcam activated successfully")

    async def _deactivate_locked(self) -> None:
        """Deactivate webcam (must be called with lock held)."""
        if not self._active:
            return

        logger.info("Closing webcam")

        if self._cap is not None:
            self._cap.release()
            self._cap = None

        self._active = False
        logger.info("Webcam deactivated")

    async def set_active(self, active: bool) -> None:
        """Activate or deactivate webcam."""
        async with self._lock:
            if active:
                await self._activate_locked()
            else:
                await self._deactivate_locked()

    def _read_frame(self) -> Optional[np.ndarray]:
        if self._cap is None or not self._cap.isOpened():
            return None
        ret, frame = self._cap.read()
        if not ret or frame is None:
            return None
        return frame

    @staticmethod
    def _encode_jpeg(frame: np.ndarray, quality: int) -> Optional[bytes]:
        ok, enc = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
        return enc.tobytes() if ok else None

    async def capture_still(self) -> str:
        """Grab one frame and return it as a base64 JPEG data URI."""
        if not self.enable_hardware:
            raise CaptureUnavailable(log_message="OpenCV not available")

        async with self._lock:
            if not self._active:
                raise CaptureUnavailable(log_message=f"webcam {self.camera_id} is not active")
            loop = asyncio.get_running_loop()
            frame = await loop.run_in_executor(None, self._read_frame)

        if frame is None:
            raise CaptureUnavailable(log_message=f"webcam {self.camera_id} returned no frame")

        jpeg = self._encode_jpeg(frame, self.settings.jpeg_quality)
        if jpeg is None:
            raise CaptureUnavailable(log_message="failed to encode still frame")

        logger.info("Captured still frame %dx%d (%d bytes)", frame.shape[1], frame.shape[0], len(jpeg))
        return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")

    async def _preview_loop(self) -> None:
        """Main preview loop."""
        interval = 1.0 / max(self.settings.preview_fps, 1.0)
        try:
            while not self._stop_event.is_set():
                if self._active and self._preview_subscribers:
                    async with self._lock:
                        loop = asyncio.get_running_loop()
                        frame = await loop.run_in_executor(None, self._read_frame)
                    self._broadcast_frame(self._serialize_frame(frame))
                    await asyncio.sleep(interval)
                else:
                    # Inactive - send placeholder
                    self._broadcast_frame(self._placeholder_frame())
                    await asyncio.sleep(0.1)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Webcam preview loop crashed")
        finally:
            self._stop_event.clear()
            logger.info("Webcam preview loop stopped")

    def _serialize_frame(self, frame: Optional[np.ndarray]) -> bytes:
        """Serialize frame to JPEG."""
        if frame is None or cv2 is None:
            return self._placeholder_frame()
        try:
            return self._encode_jpeg(frame, self.settings.preview_jpeg_quality) or self._placeholder_frame()
        except Exception as e:
            logger.warning(f"Frame serialization error: {e}")
            return self._placeholder_frame()

    def _placeholder_frame(self) -> bytes:
        """Return placeholder frame."""
        return _PLACEHOLDER_JPEG

    def _broadcast_frame(self, frame: bytes) -> None:
        """Broadcast frame to all subscribers."""
        for q in list(self._preview_subscribers):
            if q.full():
                try:
                    q.get_nowait()
                except QueueEmpty:
                    pass
            q.put_nowait(frame)

    async def preview_stream(self) -> AsyncIterator[bytes]:
        """Stream preview frames."""
        q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=self.settings.preview_queue_size)
        self._preview_subscribers.append(q)
        try:
            while True:
                frame = await q.get()
                yield frame
        finally:
            self._preview_subscribers.remove(q)
