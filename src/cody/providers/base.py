"""Base provider interface."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Sequence

from ..memory.models import Turn


class ProviderKind(Enum):
    """What a provider is used for."""

    SEARCH_GROUNDED = "search_grounded"
    CHAT_COMPLETION = "chat_completion"
    FACT_EXTRACTION = "fact_extraction"


class Provider(ABC):
    """A generative-text backend.

    ``generate`` raises ProviderError on timeouts, rate limiting, upstream
    failures and unusable responses. Nothing else escapes it.
    """

    kind: ProviderKind = ProviderKind.CHAT_COMPLETION
    max_context_tokens: int = 6000

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique id, used as the quota key."""
        ...

    @abstractmethod
    async def generate(self, system_prompt: str, turns: Sequence[Turn]) -> str:
        """Generate a reply to the conversation turns."""
        ...
