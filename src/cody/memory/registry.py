"""Registry of users eligible for check-ins, partitioned into batches."""

import asyncio
import json
import logging
import time
from typing import Any, Callable

from ..store import DurableStore
from .models import Batch, UserRegistration

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"
BATCH_PREFIX = "batch:"
BATCH_INDEX_KEY = "batches"
DEFAULT_BATCH_CAPACITY = 10


class UserRegistry:
    """Append-only, capacity-bounded batch assignment for registered users.

    Registrations never expire. A new batch is opened only when the newest
    one holds ``capacity`` users.
    """

    def __init__(
        self,
        store: DurableStore,
        capacity: int = DEFAULT_BATCH_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity < 1:
            raise ValueError("Batch capacity must be at least 1")
        self.store = store
        self.capacity = capacity
        self.clock = clock
        # Serializes batch assignment only; lookups of known users skip it.
        self._assign_lock = asyncio.Lock()

    async def _load_json(self, key: str, default: Any) -> Any:
        raw = await self.store.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def _save_json(self, key: str, value: Any) -> None:
        await self.store.set(key, json.dumps(value).encode("utf-8"))

    async def get(self, chat_id: str) -> UserRegistration | None:
        """Return the registration for chat_id, if any."""
        data = await self._load_json(USER_PREFIX + chat_id, None)
        return UserRegistration.from_dict(data) if data else None

    async def register(self, chat_id: str, display_name: str) -> UserRegistration:
        """Register chat_id if unseen; return the existing record otherwise."""
        existing = await self.get(chat_id)
        if existing is not None:
            return existing

        async with self._assign_lock:
            existing = await self.get(chat_id)
            if existing is not None:
                return existing

            batch_ids: list[str] = await self._load_json(BATCH_INDEX_KEY, [])
            members: list[str] = []
            if batch_ids:
                members = await self._load_json(BATCH_PREFIX + batch_ids[-1], [])

            opens_batch = not batch_ids or len(members) >= self.capacity
            if opens_batch:
                batch_id = f"batch_{len(batch_ids) + 1}"
                batch_ids.append(batch_id)
                members = []
            else:
                batch_id = batch_ids[-1]

            registration = UserRegistration(
                chat_id=chat_id,
                display_name=display_name,
                batch_id=batch_id,
                registered_at=self.clock(),
            )
            # Members, then index, then user record. A failed write never leaves
            # an indexed empty batch.
            if chat_id not in members:
                members.append(chat_id)
            await self._save_json(BATCH_PREFIX + batch_id, members)
            if opens_batch:
                await self._save_json(BATCH_INDEX_KEY, batch_ids)
            await self._save_json(USER_PREFIX + chat_id, registration.to_dict())

        logger.info("Registered %s (%s) in %s", chat_id, display_name, batch_id)
        return registration

    async def batches(self) -> list[Batch]:
        """Snapshot of every batch, in creation order."""
        result = []
        for batch_id in await self._load_json(BATCH_INDEX_KEY, []):
            users = []
            for chat_id in await self._load_json(BATCH_PREFIX + batch_id, []):
                registration = await self.get(chat_id)
                if registration is not None:
                    users.append(registration)
            result.append(Batch(batch_id=batch_id, users=tuple(users)))
        return result

    async def import_batches(self, data: dict[str, list[dict[str, Any]]]) -> int:
        """Seed the registry from a ``users.json`` style mapping.

        The mapping is ``{batch_name: [{"name": ..., "chatId": ...}, ...]}``.
        Users are registered in file order; batch names in the file are not
        kept, capacity decides placement. Known chat ids are skipped.

        Returns:
            Number of newly registered users.
        """
        added = 0
        for users in data.values():
            for user in users:
                chat_id = str(user.get("chatId") or user.get("chat_id") or "")
                if not chat_id:
                    logger.warning("Skipping user without chat id: %s", user)
                    continue
                if await self.get(chat_id) is not None:
                    continue
                await self.register(chat_id, str(user.get("name") or chat_id))
                added += 1
        return added
