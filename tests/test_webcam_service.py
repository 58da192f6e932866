"""Webcam capture surface tests with a stand-in OpenCV capture device."""

from __future__ import annotations

import asyncio
import base64

import numpy as np
import pytest

cv2 = pytest.importorskip("cv2")

from scanner.config import CameraSettings  # noqa: E402
from scanner.errors import CaptureUnavailable  # noqa: E402
from scanner.sensors import webcam_service  # noqa: E402
from scanner.sensors.webcam_service import WebcamService  # noqa: E402


class FakeVideoCapture:
    instances: list = []

    def __init__(self, camera_id: int, *, opened: bool = True, frame_ok: bool = True) -> None:
        self.camera_id = camera_id
        self.opened = opened
        self.frame_ok = frame_ok
        self.released = False
        self.props: dict = {}
        FakeVideoCapture.instances.append(self)

    def isOpened(self) -> bool:  # noqa: N802 - OpenCV API
        return self.opened and not self.released

    def set(self, prop, value) -> bool:
        self.props[prop] = value
        return True

    def read(self):
        if not self.frame_ok:
            return False, None
        frame = np.zeros((6, 8, 3), dtype=np.uint8)
        frame[:, :, 2] = 200
        return True, frame

    def release(self) -> None:
        self.released = True


@pytest.fixture(autouse=True)
def fake_device(monkeypatch):
    FakeVideoCapture.instances = []
    monkeypatch.setattr(webcam_service.cv2, "VideoCapture", lambda camera_id: FakeVideoCapture(camera_id))
    return FakeVideoCapture


def test_capture_still_returns_jpeg_data_uri() -> None:
    service = WebcamService(CameraSettings(camera_id=3, resolution_width=640, resolution_height=480))

    async def scenario():
        await service.set_active(True)
        try:
            return await service.capture_still()
        finally:
            await service.set_active(False)

    uri = asyncio.run(scenario())

    assert uri.startswith("data:image/jpeg;base64,")
    assert base64.b64decode(uri.split(",", 1)[1])[:2] == b"\xff\xd8"
    device = FakeVideoCapture.instances[0]
    assert device.camera_id == 3
    assert device.props[cv2.CAP_PROP_FRAME_WIDTH] == 640
    assert device.props[cv2.CAP_PROP_FRAME_HEIGHT] == 480
    assert device.released


def test_capture_requires_active_camera() -> None:
    service = WebcamService(CameraSettings())

    with pytest.raises(CaptureUnavailable) as excinfo:
        asyncio.run(service.capture_still())

    assert excinfo.value.user_message == CaptureUnavailable.default_user_message
    assert FakeVideoCapture.instances == []


def test_failed_read_is_unavailable() -> None:
    service = WebcamService(CameraSettings())

    async def scenario():
        await service.set_active(True)
        FakeVideoCapture.instances[0].frame_ok = False
        await service.capture_still()

    with pytest.raises(CaptureUnavailable):
        asyncio.run(scenario())


def test_unopenable_device_stays_inactive(monkeypatch) -> None:
    monkeypatch.setattr(
        webcam_service.cv2, "VideoCapture", lambda camera_id: FakeVideoCapture(camera_id, opened=False)
    )
    service = WebcamService(CameraSettings())

    async def scenario():
        await service.set_active(True)
        assert not service.active
        await service.capture_still()

    with pytest.raises(CaptureUnavailable):
        asyncio.run(scenario())
    assert FakeVideoCapture.instances[0].released


def test_acquired_releases_on_error() -> None:
    service = WebcamService(CameraSettings())

    async def scenario():
        async with service.acquired():
            assert service.active
            raise RuntimeError("scan aborted")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert not service.active
    assert FakeVideoCapture.instances[0].released


def test_missing_opencv_is_unavailable(monkeypatch) -> None:
    service = WebcamService(CameraSettings())
    service.enable_hardware = False

    with pytest.raises(CaptureUnavailable):
        asyncio.run(service.capture_still())


def test_preview_yields_frames_and_stops() -> None:
    service = WebcamService(CameraSettings(preview_fps=50))

    async def scenario():
        await service.start()
        stream = service.preview_stream()
        first = await asyncio.wait_for(stream.__anext__(), timeout=2)
        await stream.aclose()
        await service.stop()
        return first

    frame = asyncio.run(scenario())

    assert frame[:2] == b"\xff\xd8"
    assert not service.active
    assert FakeVideoCapture.instances[0].released
