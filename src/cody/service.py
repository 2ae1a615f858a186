"""Wires the dispatch core, transport and background jobs together."""

import asyncio
import logging
from dataclasses import dataclass, field

from groq import AsyncGroq

from .cache import ResponseCache
from .config import CHAT_PROVIDER_ID, SEARCH_PROVIDER_ID, Settings
from .dispatch import (
    PROVIDER_ERROR_MESSAGE,
    DispatchOutcome,
    DispatchResult,
    Dispatcher,
)
from .logging import JSONLLogger, configure_logger
from .memory import ConversationStore, FactExtractor, UserRegistry
from .notifier import BatchNotifier, CheckInGenerator
from .providers import GeminiSearchProvider, GroqProvider, Provider, ProviderKind
from .quota import QuotaTracker
from .store import SQLiteStore
from .telegram import TelegramTransport

logger = logging.getLogger(__name__)


@dataclass
class Service:
    """All long-lived components of a running bot."""

    settings: Settings
    store: SQLiteStore
    quota: QuotaTracker
    registry: UserRegistry
    dispatcher: Dispatcher
    transport: TelegramTransport
    notifier: BatchNotifier
    json_logger: JSONLLogger
    _inflight: set[asyncio.Task] = field(default_factory=set)

    async def start(self) -> None:
        """Start the independent timers: store sweep, quota reset, check-ins."""
        self.store.start_sweep_task()
        self.quota.start_reset_task()
        await self.transport.start()
        if self.settings.checkin_enabled:
            self.notifier.start(
                interval=self.settings.checkin_interval_seconds,
                window=self.settings.checkin_window_seconds,
            )
        logger.info(
            "Initial quotas: %s",
            {pid: q.max_per_period for pid, q in self.quota.snapshot().items()},
        )

    async def stop(self) -> None:
        self.notifier.stop()
        self.quota.stop_reset_task()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self.transport.stop()
        await self.store.close()

    async def process_message(
        self, chat_id: str, text: str, display_name: str | None = None
    ) -> DispatchResult:
        """Handle one inbound message end to end and send the reply."""
        self.json_logger.log("message_received", chat_id=chat_id, length=len(text))
        await self.transport.send_typing_indicator(chat_id)
        try:
            result = await self.dispatcher.handle(chat_id, text, display_name)
        except Exception as e:
            logger.exception("Error processing message")
            self.json_logger.log("dispatch_error", chat_id=chat_id, error=str(e))
            result = DispatchResult(PROVIDER_ERROR_MESSAGE, DispatchOutcome.PROVIDER_ERROR)
        await self.transport.send_text(chat_id, result.reply)
        logger.info(
            "Replied to chat %s using %s (%s)",
            chat_id,
            result.provider_id or "none",
            result.outcome.value,
        )
        return result

    def submit(
        self, chat_id: str, text: str, display_name: str | None = None
    ) -> asyncio.Task:
        """Run process_message as a tracked task that outlives its caller.

        Awaiting callers should shield the task: a client timeout must not
        cancel a dispatch that has already consumed quota.
        """
        task = asyncio.create_task(self.process_message(chat_id, text, display_name))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task


def build_chain(settings: Settings, groq_client: AsyncGroq) -> list[Provider]:
    """Search-grounded provider first (when configured), then chat completion."""
    chain: list[Provider] = []
    if settings.gemini_api_key:
        chain.append(
            GeminiSearchProvider(
                settings.gemini_api_key,
                model=settings.gemini_model,
                provider_id=SEARCH_PROVIDER_ID,
            )
        )
    else:
        logger.warning("GEMINI_API_KEY not set, search-grounded provider disabled")
    chain.append(
        GroqProvider(groq_client, model=settings.groq_model, provider_id=CHAT_PROVIDER_ID)
    )
    return chain


def build_service(
    settings: Settings,
    groq_client: AsyncGroq | None = None,
    transport: TelegramTransport | None = None,
) -> Service:
    """Build every component from settings."""
    json_logger = configure_logger(settings.log_dir)
    groq_client = groq_client or AsyncGroq(api_key=settings.groq_api_key)
    transport = transport or TelegramTransport(
        settings.telegram_token, json_logger=json_logger
    )

    store = SQLiteStore(settings.db_path)
    store.init_db()

    quota = QuotaTracker(
        settings.quotas,
        period_seconds=settings.quota_period_seconds,
        json_logger=json_logger,
    )
    registry = UserRegistry(store, capacity=settings.batch_capacity)
    conversations = ConversationStore(
        store,
        registry=registry,
        max_history=settings.max_history,
        ttl_seconds=settings.memory_ttl_seconds,
    )
    extractor = FactExtractor(
        GroqProvider(
            groq_client,
            model=settings.groq_model,
            provider_id="groq-facts",
            kind=ProviderKind.FACT_EXTRACTION,
            temperature=0.1,
        )
    )
    dispatcher = Dispatcher(
        build_chain(settings, groq_client),
        quota,
        ResponseCache(store, default_ttl=settings.cache_ttl_seconds),
        conversations,
        extractor=extractor,
        json_logger=json_logger,
    )
    notifier = BatchNotifier(
        registry,
        CheckInGenerator(GroqProvider(groq_client, model=settings.groq_model)),
        transport,
        json_logger=json_logger,
    )

    return Service(
        settings=settings,
        store=store,
        quota=quota,
        registry=registry,
        dispatcher=dispatcher,
        transport=transport,
        notifier=notifier,
        json_logger=json_logger,
    )
