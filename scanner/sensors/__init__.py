"""Capture surface implementations."""
from .webcam_service import WebcamService

__all__ = ["WebcamService"]
