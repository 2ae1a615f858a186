"""Durable store interface."""

from abc import ABC, abstractmethod


class DurableStore(ABC):
    """Key/value store with per-key expiry.

    Values are opaque bytes. A key whose expiry has passed reads as absent,
    whether or not it has been swept yet. Implementations raise
    StoreUnavailable when the backend cannot be reached.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value for key, or None if absent or expired."""
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: float | None = None) -> None:
        """Write value under key, expiring after ttl seconds (None = never)."""
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether key holds a live value."""
        ...

    @abstractmethod
    async def expire(self, key: str, ttl: float) -> bool:
        """Re-arm the expiry of a live key. Returns False if absent."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if a value was removed."""
        ...

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Physically remove expired keys. Returns how many were removed."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
