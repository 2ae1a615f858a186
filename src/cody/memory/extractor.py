"""Fact extraction from user messages using an LLM."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Mapping

from ..errors import FactParseError, ProviderError
from .models import FactValue, Turn

if TYPE_CHECKING:
    from ..providers import Provider

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You maintain a small profile of facts about a user.

Given the facts already known and the user's newest message, return ONLY a
flat JSON object with the facts that are new or have changed.

Rules:
- Keys are short snake_case names: name, age, city, job, hobby, pet, language, ...
- Values are plain strings, numbers or booleans. No lists, no nested objects.
- Numbers stay numbers: {"age": 17}, not {"age": "17"}.
- Only stable facts stated by the user, no guesses, no questions.
- Do not repeat facts whose value is unchanged.
- If there is nothing new, return {}
"""

MAX_KEY_LENGTH = 64
DEFAULT_MAX_KEYS = 20


def merge_facts(
    current: Mapping[str, FactValue], delta: Mapping[str, FactValue]
) -> dict[str, FactValue]:
    """Overlay delta on current, key by key. New values win."""
    merged = dict(current)
    merged.update(delta)
    return merged


def strip_code_fence(content: str) -> str:
    """Remove markdown code fences and any prose around a JSON object."""
    text = content.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.startswith("```")]
        text = "\n".join(lines).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]
    return text


def validate_delta(data: Any, max_keys: int = DEFAULT_MAX_KEYS) -> dict[str, FactValue]:
    """Keep only well-formed scalar facts.

    Raises:
        FactParseError: If data is not a JSON object.
    """
    if not isinstance(data, dict):
        raise FactParseError(f"Expected a JSON object, got {type(data).__name__}")

    delta: dict[str, FactValue] = {}
    for key, value in data.items():
        if len(delta) >= max_keys:
            logger.warning("Fact delta truncated to %d keys", max_keys)
            break
        if not isinstance(key, str) or not key.strip() or len(key) > MAX_KEY_LENGTH:
            logger.warning(f"Skipping invalid fact key: {key!r}")
            continue
        if not isinstance(value, (str, int, float, bool)):
            logger.warning(f"Skipping non-scalar fact value for {key!r}")
            continue
        delta[key.strip()] = value
    return delta


class FactExtractor:
    """Derives a fact delta from a new message with one provider call."""

    def __init__(self, provider: Provider, max_keys: int = DEFAULT_MAX_KEYS) -> None:
        """Initialize the extractor.

        Args:
            provider: Provider used for the extraction call.
            max_keys: Maximum facts accepted from a single response.
        """
        self.provider = provider
        self.max_keys = max_keys

    def build_prompt(self, current_facts: Mapping[str, FactValue], new_message: str) -> str:
        """Format known facts and the new message for the extraction call."""
        facts_json = json.dumps(dict(current_facts), ensure_ascii=False, sort_keys=True)
        return f"Known facts: {facts_json}\n\nNew message: {new_message}"

    async def extract(
        self, current_facts: Mapping[str, FactValue], new_message: str
    ) -> dict[str, FactValue]:
        """Extract new or changed facts from a message.

        Returns:
            The fact delta, empty if nothing was found or on any error.
        """
        if not new_message.strip():
            return {}

        prompt = self.build_prompt(current_facts, new_message)
        try:
            content = await self.provider.generate(
                EXTRACTION_PROMPT, [Turn("user", prompt)]
            )
        except ProviderError as e:
            logger.warning(f"Fact extraction failed: {e}")
            return {}

        try:
            return self.parse_response(content)
        except FactParseError as e:
            logger.warning(f"Failed to parse extraction response: {e}")
            return {}

    def parse_response(self, content: str) -> dict[str, FactValue]:
        """Parse and validate a raw extraction response.

        Raises:
            FactParseError: If the response is not a JSON object.
        """
        try:
            data = json.loads(strip_code_fence(content))
        except json.JSONDecodeError as e:
            raise FactParseError(str(e)) from e
        return validate_delta(data, self.max_keys)
