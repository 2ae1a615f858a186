"""Search-grounded provider backed by the Gemini REST API."""

import logging
from typing import Any, Sequence

import httpx

from ..errors import ProviderError, ProviderErrorKind
from ..memory.models import Turn
from .base import Provider, ProviderKind

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiSearchProvider(Provider):
    """Gemini ``generateContent`` with the Google Search grounding tool."""

    kind = ProviderKind.SEARCH_GROUNDED

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        provider_id: str = "gemini-search",
        timeout: float = 30.0,
        max_context_tokens: int = 8000,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._provider_id = provider_id
        self._timeout = timeout
        self._transport = transport
        self.max_context_tokens = max_context_tokens

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def model(self) -> str:
        return self._model

    def build_payload(self, system_prompt: str, turns: Sequence[Turn]) -> dict[str, Any]:
        """Build the request body.

        Gemini only accepts ``user`` and ``model`` roles in contents, so
        system turns from history are folded into the system instruction.
        """
        system_parts = [system_prompt] if system_prompt else []
        contents = []
        for turn in turns:
            if turn.role == "system":
                system_parts.append(turn.content)
                continue
            role = "model" if turn.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": turn.content}]})

        payload: dict[str, Any] = {
            "contents": contents,
            "tools": [{"google_search": {}}],
        }
        if system_parts:
            payload["system_instruction"] = {
                "parts": [{"text": "\n\n".join(system_parts)}]
            }
        return payload

    def _parse_text(self, data: Any) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE,
                f"Unexpected response shape: {e}",
                self.provider_id,
            ) from e
        if not text.strip():
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE,
                "Empty candidate text",
                self.provider_id,
            )
        return text

    async def generate(self, system_prompt: str, turns: Sequence[Turn]) -> str:
        url = f"{GEMINI_API_BASE}/models/{self._model}:generateContent"
        payload = self.build_payload(system_prompt, turns)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    url,
                    params={"key": self._api_key},
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            raise ProviderError(
                ProviderErrorKind.TIMEOUT,
                f"Request timed out after {self._timeout}s",
                self.provider_id,
            ) from e
        except httpx.HTTPStatusError as e:
            kind = (
                ProviderErrorKind.RATE_LIMITED
                if e.response.status_code == 429
                else ProviderErrorKind.UPSTREAM
            )
            raise ProviderError(
                kind, f"HTTP {e.response.status_code}", self.provider_id
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(ProviderErrorKind.UPSTREAM, str(e), self.provider_id) from e
        except ValueError as e:
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE, "Invalid JSON body", self.provider_id
            ) from e

        return self._parse_text(data)
