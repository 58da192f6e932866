"""Entity describer: asks the multimodal model to invent a scene-anchored entity."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import DescriptionFailed
from ..models import ENTITY_RESPONSE_SCHEMA, EntityDescription
from ..prompts import DEFAULT_PROMPT
from .gemini_client import GeminiHttpClient, candidate_parts

logger = logging.getLogger(__name__)

_DATA_URI_PREFIX = re.compile(r"^data:(image/[A-Za-z0-9.+-]+);base64,")
_DEFAULT_MIME = "image/jpeg"


def split_data_uri(image: str) -> Tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a data URI or bare base64 string."""
    match = _DATA_URI_PREFIX.match(image)
    if not match:
        return _DEFAULT_MIME, image.strip()
    return match.group(1), image[match.end():].strip()


class EntityDescriber:
    """Stateless wrapper around one structured-output description call."""

    def __init__(self, client: GeminiHttpClient, settings: Settings) -> None:
        self._client = client
        self.settings = settings

    def build_payload(self, image: str, instruction: Optional[str]) -> Dict[str, Any]:
        mime_type, data = split_data_uri(image)
        return {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"inlineData": {"mimeType": mime_type, "data": data}},
                        {"text": (instruction or "").strip() or DEFAULT_PROMPT},
                    ],
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": ENTITY_RESPONSE_SCHEMA,
                "temperature": self.settings.generation.temperature,
            },
        }

    async def describe(self, image: str, instruction: Optional[str] = None) -> EntityDescription:
        """Describe the hidden entity in ``image``; raises ``DescriptionFailed``."""
        if not image or not split_data_uri(image)[1]:
            raise DescriptionFailed(log_message="describe called without image data")

        payload = self.build_payload(image, instruction)
        model = self.settings.describe_model
        try:
            logger.info("describer.describe: requesting entity from %s", model)
            data = await asyncio.wait_for(
                self._client.generate_content(model, payload),
                timeout=self.settings.generation.describe_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("describer.describe: request timeout")
            raise DescriptionFailed(log_message="description request timed out") from e
        except httpx.TimeoutException as e:
            logger.error("describer.describe: request timeout")
            raise DescriptionFailed(log_message="description request timed out") from e
        except httpx.NetworkError as e:
            logger.error("describer.describe: network error - %s", e)
            raise DescriptionFailed(log_message=f"network error: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error("describer.describe: HTTP %d - %s", e.response.status_code, e.response.text)
            raise DescriptionFailed(log_message=f"HTTP {e.response.status_code}") from e
        except Exception as e:
            logger.exception("describer.describe: unexpected error - %s", e)
            raise DescriptionFailed(log_message=f"unexpected error: {e}") from e

        text = "".join(
            part["text"] for part in candidate_parts(data) if isinstance(part.get("text"), str)
        ).strip()
        if not text:
            logger.error("describer.describe: empty response %s", data.get("promptFeedback"))
            raise DescriptionFailed(log_message="No hay respuesta del mundo invisible.")

        try:
            entity = EntityDescription.model_validate_json(text)
        except ValidationError as e:
            logger.error("describer.describe: response does not match schema - %s", e)
            raise DescriptionFailed(log_message="malformed entity description") from e

        logger.info("describer.describe: detected '%s' (%s)", entity.title, entity.rarity.value)
        return entity


__all__ = ["EntityDescriber", "split_data_uri"]
