"""Prompt builder for replies."""

import json
from typing import Mapping

from ..memory.models import FactValue

SYSTEM_PROMPT_BASE = """You are Cody, a friendly assistant chatting with people on Telegram.

Keep answers short and conversational. Use what you know about the user to
personalize your replies, but never invent facts about them."""

CHECKIN_PROMPT = """You are Cody, a friendly AI assistant. Your task is to generate a short, friendly check-in message to a user. Ask them how their day is going or something similar. The user's name is provided."""


def format_facts_block(facts: Mapping[str, FactValue]) -> str:
    """Format known facts as a block for the system prompt.

    Returns:
        XML-wrapped JSON object of facts, or empty string if no facts.
    """
    if not facts:
        return ""

    content = json.dumps(dict(facts), ensure_ascii=False, sort_keys=True)
    return f"""<memory>
What you know about the user:
{content}
</memory>"""


def build_system_prompt(
    facts: Mapping[str, FactValue] | None = None,
    display_name: str | None = None,
) -> str:
    """Build the system prompt with the user's name and remembered facts."""
    prompt = SYSTEM_PROMPT_BASE

    if display_name:
        prompt += f"\n\nThe user's display name is {display_name}."

    memory_block = format_facts_block(facts or {})
    if memory_block:
        prompt += "\n\n" + memory_block

    return prompt
