"""Shared scanner state definitions."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .models import EntityDescription, ScanConfiguration


class ScanPhase(str, enum.Enum):
    """
    Scan phases in chronological order:

    1. IDLE         - Waiting for a capture trigger
    2. ANALYZING    - Still captured, entity description in flight
    3. VISUALIZING  - Entity described, image generation in flight
    4. DONE         - Session populated (0..N images) until reset/re-scan

    A failed description returns straight to IDLE with an error.
    """
    IDLE = "idle"
    ANALYZING = "analyzing"
    VISUALIZING = "visualizing"
    DONE = "done"


@dataclass(frozen=True)
class ScanSession:
    """One capture-through-result cycle. Replaced, never mutated in place."""

    session_id: str
    capture: str
    created_at: float
    phase: ScanPhase
    configuration: ScanConfiguration
    entity: Optional[EntityDescription] = None
    visualizations: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.visualizations and self.entity is None:
            raise ValueError("visualizations require an entity description")

    def to_payload(self, *, include_images: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "phase": self.phase.value,
            "resolution": self.configuration.resolution.value,
            "entity": self.entity.model_dump(mode="json", by_alias=True) if self.entity else None,
            "visualization_count": len(self.visualizations),
        }
        if include_images:
            payload["capture"] = self.capture
            payload["visualizations"] = list(self.visualizations)
        return payload


@dataclass
class ScannerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: ScanPhase
    error: Optional[str] = None


__all__ = ["ScanPhase", "ScanSession", "ScannerEvent"]
