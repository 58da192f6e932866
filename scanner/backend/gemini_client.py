"""HTTP client for the Gemini generateContent REST endpoint."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings
from ..errors import ProviderConfigurationError

logger = logging.getLogger(__name__)


class GeminiHttpClient:
    """Thin wrapper around the Gemini REST API shared by both pipeline stages."""

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        api_key = (settings.gemini_api_key or "").strip()
        if not api_key:
            raise ProviderConfigurationError(log_message="GEMINI_API_KEY is empty")
        self._client = httpx.AsyncClient(
            base_url=self.settings.gemini_api_base,
            timeout=self.settings.http_timeout_seconds,
            headers={"x-goog-api-key": api_key, "Content-Type": "application/json"},
            transport=transport,
        )

    async def generate_content(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST one generateContent request and return the decoded JSON body.

        Transport and status errors propagate as httpx exceptions; callers decide
        whether a failure is fatal to their stage.
        """
        response = await self._client.post(f"/models/{model}:generateContent", json=payload)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected response body type {type(data).__name__}")
        return data

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing Gemini HTTP client: %s", e)


def candidate_parts(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return the content parts of the first candidate, or an empty list."""
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return []
    candidate = candidates[0]
    if not isinstance(candidate, dict):
        return []
    content = candidate.get("content")
    if not isinstance(content, dict):
        return []
    parts = content.get("parts")
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def describe_http_error(exc: Exception) -> str:
    """Short log label for a failed provider call."""
    if isinstance(exc, httpx.TimeoutException):
        return "request timeout"
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} - {exc.response.text[:200]}"
    if isinstance(exc, httpx.NetworkError):
        return f"network error - {exc}"
    return f"{type(exc).__name__} - {exc}"


__all__ = ["GeminiHttpClient", "candidate_parts", "describe_http_error"]
