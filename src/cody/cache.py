"""Response cache keyed by normalized query text."""

import hashlib
import logging

from .errors import StoreUnavailable
from .store import DurableStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60 * 60
KEY_PREFIX = "cache:"


def normalize_key(text: str) -> str:
    """Trim, case-fold and collapse internal whitespace."""
    return " ".join(text.split()).casefold()


class ResponseCache:
    """Memoizes provider replies for identical queries.

    Entries can be scoped (the dispatcher scopes by chat id) so a reply
    generated with one chat's facts is never served to another chat.
    Expiry is delegated to the durable store, which hides expired entries
    on read and sweeps them in the background.
    """

    def __init__(self, store: DurableStore, default_ttl: float = DEFAULT_TTL_SECONDS) -> None:
        self.backend = store
        self.default_ttl = default_ttl

    def _store_key(self, key: str, scope: str | None) -> str:
        digest = hashlib.sha256(normalize_key(key).encode("utf-8")).hexdigest()
        if scope is None:
            return KEY_PREFIX + digest
        return f"{KEY_PREFIX}{scope}:{digest}"

    async def lookup(self, key: str, scope: str | None = None) -> str | None:
        """Return the cached reply for key within scope, or None on a miss."""
        if not normalize_key(key):
            return None
        try:
            value = await self.backend.get(self._store_key(key, scope))
        except StoreUnavailable as e:
            logger.warning("Cache lookup failed, treating as miss: %s", e)
            return None
        return None if value is None else value.decode("utf-8")

    async def store(
        self,
        key: str,
        text: str,
        ttl: float | None = None,
        scope: str | None = None,
    ) -> None:
        """Cache text under key, replacing any prior entry and re-arming expiry."""
        if not normalize_key(key):
            return
        try:
            await self.backend.set(
                self._store_key(key, scope),
                text.encode("utf-8"),
                ttl if ttl is not None else self.default_ttl,
            )
        except StoreUnavailable as e:
            logger.warning("Cache write dropped: %s", e)
