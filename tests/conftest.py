from __future__ import annotations

import asyncio
import base64
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

from scanner.config import GenerationSettings, Settings
from scanner.errors import CaptureUnavailable
from scanner.models import EntityDescription, ResolutionTier

CAPTURE_URI = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8fake-jpeg").decode("ascii")

ENTITY_JSON: Dict[str, str] = {
    "title": "Anomaly-1",
    "description": "Una esfera de cobre flotando sobre la mesa de madera.",
    "visualStyle": "Cobre oxidado, luz cálida lateral, reflejos suaves.",
    "meaning": "Guarda el calor que la habitación pierde por la noche.",
    "estimatedAge": "Tres siglos",
    "rarity": "Raro",
}


def make_settings(tmp_path: Path, **generation: Any) -> Settings:
    return Settings(
        gemini_api_key="test-key",
        log_directory=tmp_path / "logs",
        generation=GenerationSettings(**generation),
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def entity() -> EntityDescription:
    return EntityDescription.model_validate(ENTITY_JSON)


def text_response(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def image_response(data: str, mime_type: str = "image/png") -> Dict[str, Any]:
    return {
        "candidates": [
            {"content": {"role": "model", "parts": [{"inlineData": {"mimeType": mime_type, "data": data}}]}}
        ]
    }


class FakeCapture:
    def __init__(self, image: str = CAPTURE_URI, error: Optional[Exception] = None) -> None:
        self.image = image
        self.error = error
        self.calls = 0

    async def capture_still(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.image


class FakeDescriber:
    """Returns queued results in order; an Exception result is raised."""

    def __init__(self, *results: Any, gate: Optional[asyncio.Event] = None) -> None:
        self.results: List[Any] = list(results)
        self.gate = gate
        self.calls: List[tuple] = []

    async def describe(self, image: str, instruction: Optional[str] = None) -> EntityDescription:
        self.calls.append((image, instruction))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(result, Exception):
            raise result
        return result


class FakeSynthesizer:
    def __init__(self, images: Sequence[str] = (), gate: Optional[asyncio.Event] = None, on_call=None) -> None:
        self.images = list(images)
        self.gate = gate
        self.on_call = on_call
        self.calls: List[tuple] = []

    async def synthesize(self, entity: EntityDescription, resolution: ResolutionTier, exclusions: str) -> List[str]:
        self.calls.append((entity, resolution, exclusions))
        if self.on_call is not None:
            self.on_call()
        if self.gate is not None:
            await self.gate.wait()
        return list(self.images)


class FakeWebcam:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.camera_id = 0
        self.active = False
        self.started = False
        self.stopped = False
        self.capture = FakeCapture(error=error)

    async def start(self) -> None:
        self.started = True
        self.active = True

    async def stop(self) -> None:
        self.stopped = True
        self.active = False

    async def set_active(self, active: bool) -> None:
        self.active = active

    async def capture_still(self) -> str:
        if not self.active:
            raise CaptureUnavailable(log_message="inactive")
        return await self.capture.capture_still()

    async def preview_stream(self):
        yield b"\xff\xd8frame"


def images(count: int) -> List[str]:
    return [f"data:image/png;base64,aW1n{index}" for index in range(count)]
