"""Generative-text provider clients."""

from .base import Provider, ProviderKind
from .gemini import GeminiSearchProvider
from .groq import GroqProvider

__all__ = ["GeminiSearchProvider", "GroqProvider", "Provider", "ProviderKind"]
