"""FastAPI entry-point for the hidden layer scanner."""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

import psutil
from fastapi import Body, FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel

from . import __version__
from .config import Settings, get_settings
from .errors import CaptureUnavailable
from .logging_config import configure_logging
from .models import ResolutionTier, ScanConfiguration
from .sensors.webcam_service import WebcamService
from .session_manager import ScanSessionManager

logger = logging.getLogger(__name__)


class ScanRequest(BaseModel):
    image: Optional[str] = None  # data URI captured by the client; webcam is used when absent
    instruction: Optional[str] = None
    exclusions: Optional[str] = None
    resolution: Optional[ResolutionTier] = None


class CameraToggleRequest(BaseModel):
    enabled: bool = True


def _merge_configuration(base: ScanConfiguration, request: ScanRequest) -> ScanConfiguration:
    overrides = request.model_dump(exclude={"image"}, exclude_none=True)
    return ScanConfiguration(**{**base.model_dump(), **overrides})


def create_app(
    settings: Optional[Settings] = None,
    *,
    manager: Optional[ScanSessionManager] = None,
    webcam: Optional[WebcamService] = None,
) -> FastAPI:
    """Create the FastAPI application and wire the scanner services."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_directory, settings.log_retention_days)

    webcam = webcam or WebcamService(settings.camera)
    manager = manager or ScanSessionManager(settings=settings, capture=webcam)

    app = FastAPI(title="hidden-layer-scanner", version=__version__)
    app.state.manager = manager
    app.state.webcam = webcam

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """Catch-all exception handler to prevent application crashes."""
        logger.exception("Unhandled exception in %s: %s", request.url.path, exc)
        return PlainTextResponse(
            f"Internal server error: {str(exc)}",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors gracefully."""
        logger.warning("Validation error in %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        try:
            await webcam.start()
            logger.info("Application started successfully (webcam active=%s)", webcam.active)
        except Exception as e:
            logger.exception("Failed to start webcam service: %s", e)
            logger.error("Application startup degraded - scans need a client-supplied image")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        try:
            await manager.stop()
        except Exception as e:
            logger.exception("Error stopping session manager: %s", e)
        try:
            await webcam.stop()
        except Exception as e:
            logger.exception("Error releasing webcam: %s", e)
        logger.info("Application shutdown complete")

    @app.get("/healthz")
    async def healthcheck() -> JSONResponse:
        return JSONResponse({"status": "ok", "phase": manager.phase.value})

    @app.get("/debug/performance")
    async def debug_performance() -> JSONResponse:
        """Get real-time CPU and memory usage."""
        try:
            cpu_percent = psutil.cpu_percent(interval=0.1)
            memory = psutil.virtual_memory()

            return JSONResponse({
                "cpu_percent": round(cpu_percent, 1),
                "memory_percent": round(memory.percent, 1),
                "memory_used_mb": round(memory.used / (1024 * 1024), 1),
                "memory_total_mb": round(memory.total / (1024 * 1024), 1)
            })
        except Exception as e:
            logger.error("Performance monitoring error: %s", e)
            return JSONResponse({"error": str(e)}, status_code=500)

    @app.get("/config")
    async def get_config() -> JSONResponse:
        return JSONResponse(manager.configuration.model_dump(mode="json"))

    @app.put("/config")
    async def put_config(payload: ScanConfiguration) -> JSONResponse:
        configuration = manager.update_configuration(payload)
        return JSONResponse(configuration.model_dump(mode="json"))

    @app.post("/scan")
    async def start_scan(payload: Optional[ScanRequest] = Body(default=None)) -> JSONResponse:
        payload = payload or ScanRequest()
        configuration = _merge_configuration(manager.configuration, payload)
        try:
            session = await manager.trigger_scan(configuration, image=payload.image)
        except CaptureUnavailable as exc:
            return JSONResponse(
                {"status": "error", "message": exc.user_message},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        if session is None:
            return JSONResponse({"status": "ignored", "phase": manager.phase.value})
        return JSONResponse(
            {"status": "started", "session_id": session.session_id, "phase": manager.phase.value},
            status_code=status.HTTP_202_ACCEPTED,
        )

    @app.post("/reset")
    async def reset_scan() -> JSONResponse:
        await manager.reset()
        return JSONResponse({"status": "ok", "phase": manager.phase.value})

    @app.get("/session")
    async def get_session(images: bool = True) -> JSONResponse:
        return JSONResponse(manager.snapshot(include_images=images))

    @app.post("/camera")
    async def toggle_camera(payload: CameraToggleRequest) -> JSONResponse:
        """Activate or release the scanner camera."""
        try:
            await webcam.set_active(payload.enabled)
            logger.info("Webcam %s", "activated" if payload.enabled else "released")
            return JSONResponse({
                "status": "enabled" if webcam.active else "disabled",
                "camera_id": webcam.camera_id,
            })
        except Exception as e:
            logger.error("Failed to toggle webcam: %s", e)
            return JSONResponse({"status": "error", "message": str(e)}, status_code=500)

    @app.get("/preview")
    async def preview_stream() -> StreamingResponse:
        """Stream the live camera feed as MJPEG."""
        boundary = "frame"

        async def frame_iterator() -> AsyncIterator[bytes]:
            try:
                async for frame in webcam.preview_stream():
                    header = (
                        f"--{boundary}\r\n"
                        f"Content-Type: image/jpeg\r\n"
                        f"Content-Length: {len(frame)}\r\n\r\n"
                    ).encode("ascii")
                    yield header + frame + b"\r\n"
            except Exception as e:
                logger.error("Preview stream error: %s", e)

        media_type = f"multipart/x-mixed-replace; boundary={boundary}"
        return StreamingResponse(frame_iterator(), media_type=media_type)

    @app.websocket("/ws/ui")
    async def ui_socket(ws: WebSocket) -> None:
        await ws.accept()
        queue = manager.register_ui()
        try:
            while True:
                try:
                    event = await queue.get()
                except asyncio.CancelledError:
                    break  # Clean shutdown

                payload = {
                    "type": event.type,
                    "phase": event.phase.value,
                    "data": event.data,
                }
                if event.error:
                    payload["error"] = event.error

                try:
                    await ws.send_json(payload)
                except Exception as e:
                    logger.debug("WebSocket send failed (client disconnected): %s", e)
                    break
        except WebSocketDisconnect:
            pass
        except asyncio.CancelledError:
            pass  # Clean shutdown
        except Exception as e:
            logger.error("Unexpected error in UI websocket: %s", e)
        finally:
            manager.unregister_ui(queue)
            try:
                await ws.close()
            except Exception:
                pass

    return app


__all__ = ["create_app", "ScanRequest"]
