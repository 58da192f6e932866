"""Error taxonomy for the scan pipeline."""
from __future__ import annotations

from typing import Optional


class ScanFlowError(RuntimeError):
    """Raised when a scan step fails; carries a message safe to show users."""

    default_user_message = "Scan failed"

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        user_message = user_message or self.default_user_message
        super().__init__(log_message or user_message)
        self.user_message = user_message


class CaptureUnavailable(ScanFlowError):
    """The capture surface could not produce a still frame."""

    default_user_message = "No se puede acceder a la cámara. Verifica los permisos."


class DescriptionFailed(ScanFlowError):
    """The remote description call errored or returned unusable content."""

    default_user_message = "Error al comunicar con la dimensión oculta."


class ProviderConfigurationError(ScanFlowError):
    """The remote provider cannot be reached with the current configuration."""

    default_user_message = "Remote provider is not configured"


__all__ = ["ScanFlowError", "CaptureUnavailable", "DescriptionFailed", "ProviderConfigurationError"]
