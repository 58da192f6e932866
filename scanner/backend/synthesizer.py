"""Visual synthesizer: renders the described entity N times in parallel."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..config import Settings
from ..models import EntityDescription, ResolutionTier
from ..prompts import build_visualization_prompt
from .gemini_client import GeminiHttpClient, candidate_parts, describe_http_error

logger = logging.getLogger(__name__)


class VisualSynthesizer:
    """Issues ``visualization_count`` identical image requests and keeps the successes."""

    def __init__(self, client: GeminiHttpClient, settings: Settings) -> None:
        self._client = client
        self.settings = settings

    @property
    def count(self) -> int:
        return self.settings.generation.visualization_count

    def build_payload(self, prompt: str, resolution: ResolutionTier) -> Dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {
                    "aspectRatio": self.settings.generation.aspect_ratio,
                    "imageSize": ResolutionTier(resolution).value,
                },
            },
        }

    async def synthesize(
        self,
        entity: EntityDescription,
        resolution: ResolutionTier = ResolutionTier.LOW,
        exclusions: str = "",
    ) -> List[str]:
        """Return 0..N image data URIs in request-issue order. Never raises."""
        try:
            prompt = build_visualization_prompt(entity.description, entity.visual_style, exclusions)
            payload = self.build_payload(prompt, resolution)
            logger.info(
                "synthesizer.synthesize: issuing %d requests to %s (%s)",
                self.count,
                self.settings.image_model,
                ResolutionTier(resolution).value,
            )
            results = await asyncio.gather(
                *(self._generate_one(index, payload) for index in range(self.count)),
                return_exceptions=True,
            )
        except Exception as e:
            logger.exception("synthesizer.synthesize: visualization failed - %s", e)
            return []

        images: List[str] = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.warning("synthesizer.synthesize: request %d failed - %s", index, describe_http_error(result))
                continue
            if result is None:
                logger.warning("synthesizer.synthesize: request %d returned no image", index)
                continue
            images.append(result)

        logger.info("synthesizer.synthesize: %d/%d images generated", len(images), self.count)
        return images

    async def _generate_one(self, index: int, payload: Dict[str, Any]) -> Optional[str]:
        data = await asyncio.wait_for(
            self._client.generate_content(self.settings.image_model, payload),
            timeout=self.settings.generation.image_timeout_seconds,
        )
        for part in candidate_parts(data):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                logger.debug("synthesizer: request %d produced %s", index, mime_type)
                return f"data:{mime_type};base64,{inline['data']}"
        return None


__all__ = ["VisualSynthesizer"]
