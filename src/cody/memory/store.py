"""Per-chat conversation memory on top of the durable store."""

import json
import logging
import time
from typing import Callable, Sequence

from ..errors import StoreUnavailable
from ..store import DurableStore
from .models import ROLES, ConversationRecord, Turn, UserRegistration
from .registry import UserRegistry

logger = logging.getLogger(__name__)

CONVERSATION_PREFIX = "conv:"
DEFAULT_MAX_HISTORY = 20
DEFAULT_TTL_SECONDS = 365 * 24 * 60 * 60
TOKENS_PER_WORD = 1.3


def estimate_tokens(turns: Sequence[Turn]) -> int:
    """Rough token count: words times a constant, rounded up."""
    words = sum(len(turn.content.split()) for turn in turns)
    return int(words * TOKENS_PER_WORD + 0.999)


def fit_to_budget(
    history: Sequence[Turn],
    new_message: Turn,
    max_tokens: int,
    estimate_fn: Callable[[Sequence[Turn]], int] = estimate_tokens,
) -> list[Turn]:
    """Drop the oldest turns until history plus new_message fits max_tokens.

    Stops once a single history turn remains, even if still over budget.
    new_message is never dropped.

    Returns:
        The trimmed history followed by new_message.
    """
    kept = list(history)
    while estimate_fn(kept + [new_message]) > max_tokens and len(kept) > 1:
        kept.pop(0)
    return kept + [new_message]


class ConversationStore:
    """Loads, bounds and persists conversation records.

    Reads fail open to an empty record and writes are dropped with a log
    line when the durable store is unavailable.
    """

    def __init__(
        self,
        store: DurableStore,
        registry: UserRegistry | None = None,
        max_history: int = DEFAULT_MAX_HISTORY,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the conversation store.

        Args:
            store: The durable key/value backend.
            registry: User registry for check-in registration.
            max_history: Maximum turns kept per chat.
            ttl_seconds: Inactivity expiry, re-armed on every persist.
            clock: Returns the current time in seconds.
        """
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.store = store
        self.registry = registry or UserRegistry(store)
        self.max_history = max_history
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    @staticmethod
    def _key(chat_id: str) -> str:
        return CONVERSATION_PREFIX + chat_id

    async def load(self, chat_id: str) -> ConversationRecord:
        """Load the record for chat_id, or an empty one. Never raises."""
        try:
            raw = await self.store.get(self._key(chat_id))
        except StoreUnavailable as e:
            logger.warning("Memory load failed for %s, using empty record: %s", chat_id, e)
            return ConversationRecord(chat_id=chat_id)

        if raw is None:
            return ConversationRecord(chat_id=chat_id)

        try:
            return ConversationRecord.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding corrupt memory record for %s: %s", chat_id, e)
            return ConversationRecord(chat_id=chat_id)

    def append_turn(
        self, record: ConversationRecord, role: str, content: str
    ) -> ConversationRecord:
        """Append a turn and evict the oldest beyond max_history.

        Mutates and returns the in-hand record; the caller persists it.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        record.history.append(Turn(role, content))
        overflow = len(record.history) - self.max_history
        if overflow > 0:
            del record.history[:overflow]
        return record

    async def persist(self, chat_id: str, record: ConversationRecord) -> bool:
        """Write the full record and re-arm its expiry.

        Returns:
            True if written, False if the write was dropped.
        """
        record.last_touched = self.clock()
        payload = json.dumps(record.to_dict(), ensure_ascii=False).encode("utf-8")
        try:
            await self.store.set(self._key(chat_id), payload, self.ttl_seconds)
        except StoreUnavailable as e:
            logger.warning("Memory write dropped for %s: %s", chat_id, e)
            return False
        return True

    async def register_user(self, chat_id: str, display_name: str) -> UserRegistration:
        """Register chat_id for check-ins if unseen. Idempotent."""
        return await self.registry.register(chat_id, display_name)
