"""Scan session orchestration: capture, describe, visualize, publish."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import time
import uuid
from dataclasses import replace
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence, Set

from .backend.describer import EntityDescriber
from .backend.gemini_client import GeminiHttpClient
from .backend.synthesizer import VisualSynthesizer
from .config import Settings, get_settings
from .errors import CaptureUnavailable, DescriptionFailed
from .models import EntityDescription, ResolutionTier, ScanConfiguration
from .state import ScanPhase, ScannerEvent, ScanSession

logger = logging.getLogger(__name__)


class CaptureSurface(Protocol):
    def capture_still(self) -> Awaitable[str]: ...


class Describer(Protocol):
    def describe(self, image: str, instruction: Optional[str] = None) -> Awaitable[EntityDescription]: ...


class Synthesizer(Protocol):
    def synthesize(
        self, entity: EntityDescription, resolution: ResolutionTier, exclusions: str
    ) -> Awaitable[Sequence[str]]: ...


class ScanSessionManager:
    """Coordinates the capture surface, both remote stages, and UI state updates."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        capture: Optional[CaptureSurface] = None,
        describer: Optional[Describer] = None,
        synthesizer: Optional[Synthesizer] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._capture = capture
        self._http_client: Optional[GeminiHttpClient] = None
        if describer is None or synthesizer is None:
            self._http_client = GeminiHttpClient(self.settings)
        self._describer = describer or EntityDescriber(self._http_client, self.settings)
        self._synthesizer = synthesizer or VisualSynthesizer(self._http_client, self.settings)

        self._trigger_lock = asyncio.Lock()
        self._phase: ScanPhase = ScanPhase.IDLE
        self._phase_started_at: float = time.time()
        self._ui_subscribers: List[asyncio.Queue[ScannerEvent]] = []
        self._session: Optional[ScanSession] = None
        self._active_session_id: Optional[str] = None
        self._pipeline_task: Optional[asyncio.Task[None]] = None
        self._pipeline_tasks: Set[asyncio.Task[None]] = set()
        self._reset_generation = 0
        self._last_error: Optional[str] = None
        self.configuration = ScanConfiguration(
            exclusions=self.settings.generation.default_exclusions,
            resolution=self.settings.generation.default_resolution,
        )

    @property
    def phase(self) -> ScanPhase:
        return self._phase

    @property
    def session(self) -> Optional[ScanSession]:
        return self._session

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def busy(self) -> bool:
        return self._phase in (ScanPhase.ANALYZING, ScanPhase.VISUALIZING) or self._trigger_lock.locked()

    async def stop(self) -> None:
        logger.info("Stopping scan session manager")
        self._active_session_id = None
        for task in list(self._pipeline_tasks):
            if task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping pipeline task: %s", e)
        self._pipeline_tasks.clear()
        self._pipeline_task = None

        if self._http_client is not None:
            await self._http_client.aclose()
        logger.info("Scan session manager stopped")

    def register_ui(self) -> asyncio.Queue[ScannerEvent]:
        queue: asyncio.Queue[ScannerEvent] = asyncio.Queue(maxsize=self.settings.ui_event_queue_size)
        self._ui_subscribers.append(queue)
        return queue

    def unregister_ui(self, queue: asyncio.Queue[ScannerEvent]) -> None:
        if queue in self._ui_subscribers:
            self._ui_subscribers.remove(queue)

    def update_configuration(self, configuration: ScanConfiguration) -> ScanConfiguration:
        """Replace the configuration used by future scans."""
        self.configuration = configuration
        logger.info("Scan configuration updated (resolution=%s)", configuration.resolution.value)
        return self.configuration

    def snapshot(self, *, include_images: bool = True) -> Dict[str, Any]:
        return {
            "phase": self._phase.value,
            "phase_started_at": self._phase_started_at,
            "error": self._last_error,
            "session": self._session.to_payload(include_images=include_images) if self._session else None,
        }

    async def trigger_scan(
        self,
        configuration: Optional[ScanConfiguration] = None,
        *,
        image: Optional[str] = None,
    ) -> Optional[ScanSession]:
        """Start a new scan. Returns ``None`` when a scan is already in flight.

        Raises ``CaptureUnavailable`` when no still frame can be obtained; the
        phase stays IDLE in that case.
        """
        if self.busy:
            logger.info("Scan already in progress (%s); ignoring trigger", self._phase.value)
            return None

        async with self._trigger_lock:
            if self._phase is ScanPhase.DONE:
                logger.info("Re-scan requested; discarding previous session")
                await self._discard_session()

            configuration = configuration or self.configuration
            generation = self._reset_generation
            try:
                capture = image or await self._capture_still()
            except CaptureUnavailable as exc:
                logger.error("Capture failed: %s", exc)
                self._last_error = exc.user_message
                await self._broadcast(
                    ScannerEvent(type="error", data={"stage": "capture"}, phase=self._phase, error=exc.user_message)
                )
                raise

            if generation != self._reset_generation:
                logger.info("Reset arrived during capture; abandoning scan")
                return None

            session = ScanSession(
                session_id=uuid.uuid4().hex,
                capture=capture,
                created_at=time.time(),
                phase=ScanPhase.ANALYZING,
                configuration=configuration,
            )
            self._session = session
            self._active_session_id = session.session_id
            self._last_error = None
            await self._advance_phase(ScanPhase.ANALYZING, data={"session_id": session.session_id})
            task = asyncio.create_task(self._run_pipeline(session), name=f"scan-pipeline-{session.session_id[:8]}")
            self._pipeline_tasks.add(task)
            task.add_done_callback(self._pipeline_tasks.discard)
            self._pipeline_task = task
            logger.info("Scan %s started", session.session_id)
            return session

    async def reset(self) -> None:
        """Return to IDLE; results of any in-flight pipeline are discarded."""
        if self._active_session_id and self.busy:
            logger.info("Reset during %s; pending pipeline results will be discarded", self._phase.value)
        self._reset_generation += 1
        self._last_error = None
        await self._discard_session()

    async def wait_for_pipeline(self) -> None:
        task = self._pipeline_task
        if task is not None:
            await task

    async def _capture_still(self) -> str:
        if self._capture is None:
            raise CaptureUnavailable(log_message="no capture surface configured")
        return await self._capture.capture_still()

    async def _discard_session(self) -> None:
        self._session = None
        self._active_session_id = None
        await self._advance_phase(ScanPhase.IDLE)

    def _is_current(self, session: ScanSession) -> bool:
        return self._active_session_id == session.session_id

    async def _run_pipeline(self, session: ScanSession) -> None:
        """
        Pipeline flow:
        1. Describe the captured frame (ANALYZING)
        2. Render the entity N times in parallel (VISUALIZING)
        3. Publish the populated session (DONE)
        """
        configuration = session.configuration
        try:
            entity = await self._describer.describe(session.capture, configuration.instruction)
        except asyncio.CancelledError:
            logger.info("Scan %s cancelled during description", session.session_id)
            raise
        except DescriptionFailed as exc:
            await self._fail(session, exc.user_message, log_message=str(exc))
            return
        except Exception as exc:
            logger.exception("Unexpected description error: %s", exc)
            await self._fail(session, DescriptionFailed.default_user_message, log_message=str(exc))
            return

        if not self._is_current(session):
            logger.info("Discarding stale description for scan %s", session.session_id)
            return

        session = replace(session, entity=entity, phase=ScanPhase.VISUALIZING)
        self._session = session
        await self._advance_phase(
            ScanPhase.VISUALIZING,
            data={"session_id": session.session_id, "entity": entity.model_dump(mode="json", by_alias=True)},
        )

        try:
            visualizations = await self._synthesizer.synthesize(
                entity, configuration.resolution, configuration.exclusions
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Visualization stage failed for scan %s: %s", session.session_id, exc)
            visualizations = []

        if not self._is_current(session):
            logger.info("Discarding stale visualizations for scan %s", session.session_id)
            return

        limit = self.settings.generation.visualization_count
        session = replace(session, visualizations=tuple(visualizations)[:limit], phase=ScanPhase.DONE)
        self._session = session
        await self._advance_phase(ScanPhase.DONE, data=session.to_payload(include_images=False))
        logger.info(
            "Scan %s complete: '%s' with %d visualization(s)",
            session.session_id,
            entity.title,
            len(session.visualizations),
        )

    async def _fail(self, session: ScanSession, user_message: str, *, log_message: str) -> None:
        if not self._is_current(session):
            logger.info("Ignoring failure of stale scan %s: %s", session.session_id, log_message)
            return
        logger.error("Scan %s failed: %s", session.session_id, log_message)
        self._session = None
        self._active_session_id = None
        self._last_error = user_message
        await self._advance_phase(ScanPhase.IDLE, error=user_message)

    async def _broadcast(self, event: ScannerEvent) -> None:
        """Broadcast event to all UI subscribers with error handling."""
        for queue in list(self._ui_subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    async def _advance_phase(
        self,
        phase: ScanPhase,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        previous = self._phase
        self._phase = phase
        self._phase_started_at = time.time()
        logger.debug("Phase %s -> %s", previous.value, phase.value)
        await self._broadcast(ScannerEvent(type="state", data=data or {}, phase=phase, error=error))


__all__ = ["ScanSessionManager", "CaptureSurface"]
