"""Conversation memory, fact extraction and user registration."""

from .extractor import FactExtractor, merge_facts
from .models import Batch, ConversationRecord, Turn, UserRegistration
from .registry import UserRegistry
from .store import ConversationStore, estimate_tokens, fit_to_budget

__all__ = [
    "Batch",
    "ConversationRecord",
    "ConversationStore",
    "FactExtractor",
    "Turn",
    "UserRegistration",
    "UserRegistry",
    "estimate_tokens",
    "fit_to_budget",
    "merge_facts",
]
