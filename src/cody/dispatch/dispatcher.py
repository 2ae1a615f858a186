"""Dispatcher: cache check, quota-gated provider selection and memory."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from ..errors import ProviderError, QuotaExhausted, StoreUnavailable
from ..logging import JSONLLogger, get_logger
from ..memory import ConversationStore, Turn, fit_to_budget, merge_facts
from .prompt import build_system_prompt

if TYPE_CHECKING:
    from ..cache import ResponseCache
    from ..memory import FactExtractor
    from ..providers import Provider
    from ..quota import QuotaTracker

logger = logging.getLogger(__name__)

QUOTA_EXHAUSTED_MESSAGE = (
    "Sorry, the bot has reached its daily limit. Please try again tomorrow."
)
PROVIDER_ERROR_MESSAGE = (
    "The server is busy or overloaded. Please try again in a minute."
)


class DispatchState(Enum):
    """States a request passes through."""

    RECEIVED = "received"
    CACHE_CHECK = "cache_check"
    CACHE_HIT = "cache_hit"
    PROVIDER_SELECT = "provider_select"
    MEMORY_LOAD = "memory_load"
    FACT_MERGE = "fact_merge"
    PROVIDER_CALL = "provider_call"
    MEMORY_PERSIST = "memory_persist"
    CACHE_STORE = "cache_store"
    REPLY = "reply"
    TERMINAL = "terminal"


class DispatchOutcome(Enum):
    """How a request was answered."""

    CACHE_HIT = "cache_hit"
    ANSWERED = "answered"
    QUOTA_EXHAUSTED = "quota_exhausted"
    PROVIDER_ERROR = "provider_error"


@dataclass
class DispatchResult:
    """Result of dispatching one inbound message."""

    reply: str
    outcome: DispatchOutcome
    provider_id: str | None = None
    facts_delta: dict = field(default_factory=dict)
    states: list[DispatchState] = field(default_factory=list)


class Dispatcher:
    """Answers inbound messages through an ordered fallback chain.

    The first provider in ``chain`` with remaining quota answers. A provider
    failure does not fall through to the next provider: the user gets a
    retry notice and only their own turn is recorded.

    No lock is held while awaiting the store or a provider. Concurrent
    messages from the same chat are last-write-wins on persist.
    """

    def __init__(
        self,
        chain: Sequence[Provider],
        quota: QuotaTracker,
        cache: ResponseCache,
        memory: ConversationStore,
        extractor: FactExtractor | None = None,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        if not chain:
            raise ValueError("Fallback chain must contain at least one provider")
        self.chain = list(chain)
        self.quota = quota
        self.cache = cache
        self.memory = memory
        self.extractor = extractor
        self.json_logger = json_logger or get_logger()

        # Unknown providers are a startup config error.
        self.quota.require(p.provider_id for p in self.chain)

    def select_provider(self) -> Provider:
        """Return the first provider in the chain with quota left, consuming one request.

        Raises:
            QuotaExhausted: If every provider is out of quota.
        """
        for provider in self.chain:
            if self.quota.try_consume(provider.provider_id):
                return provider
        raise QuotaExhausted("all providers exhausted")

    async def _register(self, chat_id: str, display_name: str | None) -> None:
        try:
            await self.memory.register_user(chat_id, display_name or chat_id)
        except (StoreUnavailable, ValueError) as e:
            logger.warning("Registration skipped for %s: %s", chat_id, e)

    async def handle(
        self,
        chat_id: str,
        text: str,
        display_name: str | None = None,
    ) -> DispatchResult:
        """Dispatch one inbound message and return the reply to send."""
        start = time.monotonic()
        states = [DispatchState.RECEIVED]

        await self._register(chat_id, display_name)

        states.append(DispatchState.CACHE_CHECK)
        cached = await self.cache.lookup(text, scope=chat_id)
        if cached is not None:
            states += [DispatchState.CACHE_HIT, DispatchState.REPLY]
            result = DispatchResult(cached, DispatchOutcome.CACHE_HIT, states=states)
            return self._finish(chat_id, result, start)

        states.append(DispatchState.PROVIDER_SELECT)
        try:
            provider = self.select_provider()
        except QuotaExhausted:
            logger.info("Daily quotas exceeded, chat %s", chat_id)
            states.append(DispatchState.REPLY)
            result = DispatchResult(
                QUOTA_EXHAUSTED_MESSAGE, DispatchOutcome.QUOTA_EXHAUSTED, states=states
            )
            return self._finish(chat_id, result, start)

        logger.info("Using %s for chat %s", provider.provider_id, chat_id)

        states.append(DispatchState.MEMORY_LOAD)
        record = await self.memory.load(chat_id)
        history = list(record.history)

        states.append(DispatchState.FACT_MERGE)
        delta = {}
        if self.extractor is not None:
            delta = await self.extractor.extract(record.facts, text)
            if delta:
                record.facts = merge_facts(record.facts, delta)
                self.json_logger.log(
                    "facts_merged", chat_id=chat_id, keys=sorted(delta)
                )

        system_prompt = build_system_prompt(record.facts, display_name)
        turns = fit_to_budget(history, Turn("user", text), provider.max_context_tokens)

        states.append(DispatchState.PROVIDER_CALL)
        try:
            reply = await provider.generate(system_prompt, turns)
        except ProviderError as e:
            logger.warning(
                "Provider %s failed (%s) for chat %s: %s",
                provider.provider_id,
                e.kind.value,
                chat_id,
                e,
            )
            self.json_logger.log_provider_error(
                provider.provider_id, e.kind.value, chat_id=chat_id, error=str(e)
            )
            self.memory.append_turn(record, "user", text)
            states.append(DispatchState.MEMORY_PERSIST)
            await self.memory.persist(chat_id, record)
            states.append(DispatchState.REPLY)
            result = DispatchResult(
                PROVIDER_ERROR_MESSAGE,
                DispatchOutcome.PROVIDER_ERROR,
                provider_id=provider.provider_id,
                facts_delta=delta,
                states=states,
            )
            return self._finish(chat_id, result, start)

        self.memory.append_turn(record, "user", text)
        self.memory.append_turn(record, "assistant", reply)
        states.append(DispatchState.MEMORY_PERSIST)
        await self.memory.persist(chat_id, record)

        states.append(DispatchState.CACHE_STORE)
        await self.cache.store(text, reply, scope=chat_id)

        states.append(DispatchState.REPLY)
        result = DispatchResult(
            reply,
            DispatchOutcome.ANSWERED,
            provider_id=provider.provider_id,
            facts_delta=delta,
            states=states,
        )
        return self._finish(chat_id, result, start)

    def _finish(self, chat_id: str, result: DispatchResult, start: float) -> DispatchResult:
        result.states.append(DispatchState.TERMINAL)
        self.json_logger.log_dispatch(
            result.outcome.value,
            chat_id=chat_id,
            provider_id=result.provider_id,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        return result
