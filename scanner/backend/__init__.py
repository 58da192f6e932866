"""Remote model clients for the describe and visualize stages."""
from .describer import EntityDescriber
from .gemini_client import GeminiHttpClient
from .synthesizer import VisualSynthesizer

__all__ = [
    "EntityDescriber",
    "GeminiHttpClient",
    "VisualSynthesizer",
]
