"""Per-provider daily request ceilings."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterable

from .errors import UnknownProviderError
from .logging import JSONLLogger, get_logger

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_SECONDS = 24 * 60 * 60


@dataclass
class ProviderQuota:
    """Usage counter for one provider within the current period."""

    provider_id: str
    max_per_period: int
    used_count: int = 0
    period_start: float = 0.0

    @property
    def remaining(self) -> int:
        return self.max_per_period - self.used_count


class QuotaTracker:
    """Tracks request counts per provider against a fixed-period ceiling.

    A single lock guards every counter. It is only held for the
    compare-and-increment itself, never across an await.
    """

    def __init__(
        self,
        limits: dict[str, int],
        period_seconds: float = DEFAULT_PERIOD_SECONDS,
        clock: Callable[[], float] = time.time,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            limits: Maximum requests per period, keyed by provider id.
            period_seconds: Wall-clock interval between resets.
            clock: Returns the current time in seconds.
            json_logger: Structured event logger.
        """
        for provider_id, limit in limits.items():
            if limit < 0:
                raise ValueError(f"Negative quota for provider '{provider_id}'")

        self.period_seconds = period_seconds
        self.clock = clock
        self.json_logger = json_logger or get_logger()
        now = clock()
        self._quotas = {
            provider_id: ProviderQuota(provider_id, limit, 0, now)
            for provider_id, limit in limits.items()
        }
        self._lock = threading.Lock()
        self._reset_task: asyncio.Task | None = None

    def require(self, provider_ids: Iterable[str]) -> None:
        """Fail fast if any provider id has no configured quota."""
        missing = [p for p in provider_ids if p not in self._quotas]
        if missing:
            raise UnknownProviderError(
                f"No quota configured for provider(s): {', '.join(missing)}"
            )

    def try_consume(self, provider_id: str) -> bool:
        """Consume one request if the provider is under its ceiling.

        Returns:
            True if a request was consumed, False if the quota is exhausted
            or the provider is unknown. False has no side effect.
        """
        with self._lock:
            quota = self._quotas.get(provider_id)
            if quota is None:
                logger.error("try_consume for unknown provider '%s'", provider_id)
                return False
            if quota.used_count >= quota.max_per_period:
                return False
            quota.used_count += 1
            return True

    def get(self, provider_id: str) -> ProviderQuota | None:
        """Return a copy of one provider's quota."""
        with self._lock:
            quota = self._quotas.get(provider_id)
            return replace(quota) if quota else None

    def snapshot(self) -> dict[str, ProviderQuota]:
        """Return copies of every tracked quota."""
        with self._lock:
            return {pid: replace(q) for pid, q in self._quotas.items()}

    def reset_all(self) -> None:
        """Zero every counter and start a new period."""
        now = self.clock()
        with self._lock:
            used = {pid: q.used_count for pid, q in self._quotas.items()}
            for quota in self._quotas.values():
                quota.used_count = 0
                quota.period_start = now
        logger.info("Quotas reset (previous usage: %s)", used)
        self.json_logger.log_quota_reset(used)

    async def _reset_loop(self) -> None:
        """Background task resetting counters every period."""
        while True:
            try:
                await asyncio.sleep(self.period_seconds)
                self.reset_all()
            except asyncio.CancelledError:
                break
            except OSError as e:
                # Counters are already reset; only the event log write failed.
                logger.warning("Could not log quota reset: %s", e)

    def start_reset_task(self) -> None:
        """Start the background reset task."""
        if self._reset_task is None or self._reset_task.done():
            self._reset_task = asyncio.create_task(self._reset_loop())

    def stop_reset_task(self) -> None:
        """Stop the background reset task."""
        if self._reset_task and not self._reset_task.done():
            self._reset_task.cancel()
