"""Chat-completion provider backed by Groq."""

import logging
from typing import Any, Sequence

import groq
from groq import AsyncGroq

from ..errors import ProviderError, ProviderErrorKind
from ..memory.models import Turn
from .base import Provider, ProviderKind

logger = logging.getLogger(__name__)


class GroqProvider(Provider):
    """Provider that wraps AsyncGroq chat completions.

    Example:
        from groq import AsyncGroq
        from cody.providers import GroqProvider

        provider = GroqProvider(AsyncGroq(api_key="..."), model="llama-3.1-8b-instant")
        reply = await provider.generate("You are Cody.", [Turn("user", "Hi")])
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-8b-instant",
        provider_id: str = "groq-chat",
        kind: ProviderKind = ProviderKind.CHAT_COMPLETION,
        temperature: float | None = None,
        max_context_tokens: int = 6000,
    ) -> None:
        """Initialize the Groq provider.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
            provider_id: Quota key for this provider.
            kind: What this provider instance is used for.
            temperature: Sampling temperature, or None for the model default.
            max_context_tokens: Token budget for conversation turns.
        """
        self._client = client
        self._model = model
        self._provider_id = provider_id
        self.kind = kind
        self.temperature = temperature
        self.max_context_tokens = max_context_tokens

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    async def generate(self, system_prompt: str, turns: Sequence[Turn]) -> str:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(turn.to_message() for turn in turns)

        kwargs: dict[str, Any] = {"model": self._model, "messages": messages}
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except groq.APITimeoutError as e:
            raise ProviderError(ProviderErrorKind.TIMEOUT, str(e), self.provider_id) from e
        except groq.RateLimitError as e:
            raise ProviderError(
                ProviderErrorKind.RATE_LIMITED, str(e), self.provider_id
            ) from e
        except groq.APIError as e:
            raise ProviderError(ProviderErrorKind.UPSTREAM, str(e), self.provider_id) from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE, str(e), self.provider_id
            ) from e

        if not content or not content.strip():
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE,
                "Empty completion",
                self.provider_id,
            )
        return content
