"""Value types shared by the describe and visualize stages."""
from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .prompts import DEFAULT_EXCLUSIONS, DEFAULT_PROMPT


class Rarity(str, enum.Enum):
    """Closed rarity classification the description model must pick from."""

    COMMON = "Común"
    RARE = "Raro"
    LEGENDARY = "Legendario"
    ARTIFACT = "Artefacto"


class ResolutionTier(str, enum.Enum):
    """Coarse quality selector forwarded to the image model."""

    LOW = "1K"
    MEDIUM = "2K"
    HIGH = "4K"


class EntityDescription(BaseModel):
    """Fictional entity anchored to the captured scene. Never mutated after parsing."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    visual_style: str = Field(..., min_length=1, alias="visualStyle")
    meaning: str = Field(..., min_length=1)
    estimated_age: str = Field(..., min_length=1, alias="estimatedAge")
    rarity: Rarity


class ScanConfiguration(BaseModel):
    """User-adjustable parameters read once per scan."""

    instruction: str = Field(DEFAULT_PROMPT, description="Instruction sent with the captured frame")
    exclusions: str = Field(DEFAULT_EXCLUSIONS, description="Things the image model must avoid")
    resolution: ResolutionTier = Field(ResolutionTier.LOW, description="Requested output resolution tier")

    @field_validator("instruction", mode="before")
    @classmethod
    def _default_instruction(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_PROMPT
        return value

    @field_validator("exclusions", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return "" if value is None else value


# JSON schema the description model's output is constrained to.
ENTITY_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "title": {
            "type": "STRING",
            "description": "Un nombre técnico o místico para la anomalía detectada.",
        },
        "description": {
            "type": "STRING",
            "description": (
                "Una descripción física precisa de la entidad y su ubicación exacta en la imagen "
                "(ej: 'flotando sobre la mesa', 'emergiendo de la sombra en la esquina')."
            ),
        },
        "visualStyle": {
            "type": "STRING",
            "description": "Instrucciones visuales concretas (materiales, iluminación, colores).",
        },
        "meaning": {
            "type": "STRING",
            "description": "La función o propósito de esta entidad en este lugar.",
        },
        "estimatedAge": {
            "type": "STRING",
            "description": "Antigüedad estimada de la anomalía.",
        },
        "rarity": {
            "type": "STRING",
            "enum": [rarity.value for rarity in Rarity],
            "description": "Clasificación de rareza.",
        },
    },
    "required": ["title", "description", "visualStyle", "meaning", "estimatedAge", "rarity"],
}


__all__ = [
    "Rarity",
    "ResolutionTier",
    "EntityDescription",
    "ScanConfiguration",
    "ENTITY_RESPONSE_SCHEMA",
]
