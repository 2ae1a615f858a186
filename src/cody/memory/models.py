"""Data models for the memory system."""

import time
from dataclasses import asdict, dataclass, field
from typing import Any

ROLES = ("user", "assistant", "system")

FactValue = str | int | float | bool


@dataclass(frozen=True)
class Turn:
    """One message in a conversation history."""

    role: str
    content: str

    def to_message(self) -> dict[str, str]:
        """Chat-completion message format."""
        return {"role": self.role, "content": self.content}


@dataclass
class ConversationRecord:
    """Everything remembered about one chat.

    Attributes:
        chat_id: The chat this record belongs to.
        history: Ordered turns, oldest first, bounded by the store.
        facts: Structured facts about the user, last write wins per key.
        last_touched: Timestamp of the last persist, 0 if never persisted.
    """

    chat_id: str
    history: list[Turn] = field(default_factory=list)
    facts: dict[str, FactValue] = field(default_factory=dict)
    last_touched: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationRecord":
        """Create from dictionary."""
        return cls(
            chat_id=str(data["chat_id"]),
            history=[Turn(t["role"], t["content"]) for t in data.get("history", [])],
            facts=dict(data.get("facts", {})),
            last_touched=float(data.get("last_touched", 0.0)),
        )


@dataclass(frozen=True)
class UserRegistration:
    """A user eligible for scheduled check-ins."""

    chat_id: str
    display_name: str
    batch_id: str
    registered_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserRegistration":
        return cls(**data)


@dataclass(frozen=True)
class Batch:
    """An ordered group of users notified in one scheduling wave."""

    batch_id: str
    users: tuple[UserRegistration, ...] = ()
