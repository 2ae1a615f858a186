"""Scheduled check-in messages sent to registered users in batches."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from .dispatch.prompt import CHECKIN_PROMPT
from .errors import ProviderError, StoreUnavailable
from .logging import JSONLLogger, get_logger
from .memory.models import Batch, Turn, UserRegistration

if TYPE_CHECKING:
    from .memory import UserRegistry
    from .providers import Provider
    from .telegram import TelegramTransport

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 5 * 60
DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60

SleepFn = Callable[[float], Awaitable[None]]


class CheckInGenerator:
    """Generates a short, friendly check-in for one user."""

    def __init__(self, provider: Provider) -> None:
        self.provider = provider

    async def generate(self, name: str) -> str:
        """Generate a check-in message for the named user."""
        return await self.provider.generate(
            CHECKIN_PROMPT, [Turn("user", f"User's name: {name}")]
        )


class BatchNotifier:
    """Sends check-ins batch by batch, spread evenly over a time window.

    Batch ``i`` of ``n`` starts ``i * window / n`` seconds after scheduling.
    Users within a batch are messaged back to back. Failed sends are logged
    and dropped; there is no retry.
    """

    def __init__(
        self,
        registry: UserRegistry,
        generator: CheckInGenerator,
        transport: TelegramTransport,
        json_logger: JSONLLogger | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.generator = generator
        self.transport = transport
        self.json_logger = json_logger or get_logger()
        self.sleep = sleep
        self._tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None

    @staticmethod
    def offsets(batch_count: int, window: float) -> list[float]:
        """Start offset in seconds for each of batch_count batches."""
        if batch_count <= 0:
            return []
        step = window / batch_count
        return [index * step for index in range(batch_count)]

    async def _notify_user(self, batch_id: str, user: UserRegistration) -> bool:
        try:
            message = await self.generator.generate(user.display_name)
            delivered = await self.transport.send_text(user.chat_id, message)
        except ProviderError as e:
            logger.error(f"Error generating check-in for {user.display_name}: {e}")
            self.json_logger.log_checkin(user.chat_id, batch_id, error=str(e))
            return False
        except Exception as e:
            logger.exception(f"Unexpected error checking in on {user.display_name}")
            self.json_logger.log_checkin(user.chat_id, batch_id, error=str(e))
            return False

        if not delivered:
            self.json_logger.log_checkin(user.chat_id, batch_id, error="send failed")
            return False

        logger.info(f"Pinged {user.display_name} from {batch_id}")
        self.json_logger.log_checkin(user.chat_id, batch_id)
        return True

    async def run_batch(self, batch: Batch, delay: float = 0.0) -> int:
        """Wait delay seconds, then notify every user in the batch.

        Returns:
            Number of users successfully notified.
        """
        if delay > 0:
            await self.sleep(delay)

        logger.info(f"Processing batch: {batch.batch_id}")
        sent = 0
        for user in batch.users:
            if await self._notify_user(batch.batch_id, user):
                sent += 1
        return sent

    def schedule(
        self, batches: Sequence[Batch], window: float = DEFAULT_WINDOW_SECONDS
    ) -> list[asyncio.Task]:
        """Start one task per batch at staggered offsets. Does not block."""
        tasks = []
        for batch, offset in zip(batches, self.offsets(len(batches), window)):
            task = asyncio.create_task(self.run_batch(batch, offset))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def run_cycle(self, window: float = DEFAULT_WINDOW_SECONDS) -> list[asyncio.Task]:
        """Snapshot the registry and schedule one notification cycle.

        Users registered after the snapshot wait for the next cycle.
        """
        try:
            batches = await self.registry.batches()
        except StoreUnavailable as e:
            logger.warning("Skipping check-in cycle, registry unavailable: %s", e)
            return []

        batches = [batch for batch in batches if batch.users]
        if not batches:
            logger.info("No registered users, skipping check-in cycle")
            return []

        logger.info(
            "Scheduling %d batch(es) over %.0fs", len(batches), window
        )
        return self.schedule(batches, window)

    async def _cycle_loop(self, interval: float, window: float) -> None:
        """Background task for periodic check-in cycles."""
        while True:
            try:
                try:
                    await self.run_cycle(window)
                except Exception as e:
                    logger.exception("Check-in cycle failed")
                    self.json_logger.log("checkin_cycle_failed", error=str(e))
                await self.sleep(interval)
            except asyncio.CancelledError:
                break

    def start(
        self,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        window: float = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        """Run a check-in cycle now and then every interval seconds."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._cycle_loop(interval, window))

    def stop(self) -> None:
        """Stop the cycle loop and cancel pending batches."""
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
        for task in list(self._tasks):
            task.cancel()

    async def wait(self) -> None:
        """Wait for every scheduled batch to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
