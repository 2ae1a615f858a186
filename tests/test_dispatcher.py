"""Tests for Dispatcher."""

import pytest

from conftest import FakeProvider, provider_error
from cody.cache import ResponseCache
from cody.dispatch import (
    PROVIDER_ERROR_MESSAGE,
    QUOTA_EXHAUSTED_MESSAGE,
    DispatchOutcome,
    DispatchState,
    Dispatcher,
)
from cody.errors import QuotaExhausted, UnknownProviderError
from cody.memory import ConversationStore, FactExtractor, Turn, UserRegistry
from cody.quota import QuotaTracker


@pytest.fixture
def memory(store, clock) -> ConversationStore:
    return ConversationStore(store, registry=UserRegistry(store, clock=clock), clock=clock)


@pytest.fixture
def cache(store) -> ResponseCache:
    return ResponseCache(store, default_ttl=3600)


def make_dispatcher(
    chain,
    limits,
    cache,
    memory,
    json_logger,
    extractor=None,
) -> Dispatcher:
    quota = QuotaTracker(limits, json_logger=json_logger)
    return Dispatcher(chain, quota, cache, memory, extractor=extractor, json_logger=json_logger)


class TestConstruction:
    def test_empty_chain_rejected(self, cache, memory, json_logger):
        with pytest.raises(ValueError):
            make_dispatcher([], {}, cache, memory, json_logger)

    def test_provider_without_quota_is_startup_error(self, cache, memory, json_logger):
        with pytest.raises(UnknownProviderError):
            make_dispatcher([FakeProvider("a")], {"b": 1}, cache, memory, json_logger)


class TestFallbackChain:
    @pytest.mark.asyncio
    async def test_first_provider_answers(self, cache, memory, json_logger):
        a, b = FakeProvider("a", ["from a"]), FakeProvider("b", ["from b"])
        dispatcher = make_dispatcher([a, b], {"a": 1, "b": 1}, cache, memory, json_logger)

        result = await dispatcher.handle("1", "hello")

        assert result.reply == "from a"
        assert result.provider_id == "a"
        assert result.outcome == DispatchOutcome.ANSWERED
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_when_first_exhausted(self, cache, memory, json_logger):
        a, b = FakeProvider("a", ["from a"]), FakeProvider("b", ["from b"])
        dispatcher = make_dispatcher([a, b], {"a": 0, "b": 5}, cache, memory, json_logger)

        result = await dispatcher.handle("1", "hello")

        assert result.reply == "from b"
        assert result.provider_id == "b"
        assert a.calls == []

    @pytest.mark.asyncio
    async def test_all_exhausted_returns_fixed_notice(self, cache, memory, json_logger):
        a, b = FakeProvider("a"), FakeProvider("b")
        dispatcher = make_dispatcher([a, b], {"a": 0, "b": 0}, cache, memory, json_logger)

        result = await dispatcher.handle("1", "hello")

        assert result.reply == QUOTA_EXHAUSTED_MESSAGE
        assert result.outcome == DispatchOutcome.QUOTA_EXHAUSTED
        assert a.calls == [] and b.calls == []
        assert (await memory.load("1")).history == []
        assert await cache.lookup("hello") is None

    @pytest.mark.asyncio
    async def test_quota_consumed_per_request(self, cache, memory, json_logger):
        a, b = FakeProvider("a", ["A"]), FakeProvider("b", ["B"])
        dispatcher = make_dispatcher([a, b], {"a": 2, "b": 1}, cache, memory, json_logger)

        replies = [(await dispatcher.handle("1", f"q{i}")).reply for i in range(4)]

        assert replies == ["A", "A", "B", QUOTA_EXHAUSTED_MESSAGE]

    def test_select_provider_raises_when_all_exhausted(self, cache, memory, json_logger):
        dispatcher = make_dispatcher(
            [FakeProvider("a"), FakeProvider("b")], {"a": 0, "b": 1}, cache, memory, json_logger
        )

        assert dispatcher.select_provider().provider_id == "b"
        with pytest.raises(QuotaExhausted):
            dispatcher.select_provider()


class TestCache:
    @pytest.mark.asyncio
    async def test_repeat_query_served_from_cache(self, cache, memory, json_logger):
        a = FakeProvider("a", ["first answer"])
        dispatcher = make_dispatcher([a], {"a": 10}, cache, memory, json_logger)

        await dispatcher.handle("1", "What is Python?")
        result = await dispatcher.handle("1", "  what is python?")

        assert result.outcome == DispatchOutcome.CACHE_HIT
        assert result.reply == "first answer"
        assert len(a.calls) == 1
        assert dispatcher.quota.get("a").used_count == 1

    @pytest.mark.asyncio
    async def test_cache_hit_works_with_quota_exhausted(self, cache, memory, json_logger):
        await cache.store("hello", "cached hi", scope="1")
        dispatcher = make_dispatcher([FakeProvider("a")], {"a": 0}, cache, memory, json_logger)

        result = await dispatcher.handle("1", "hello")

        assert result.reply == "cached hi"

    @pytest.mark.asyncio
    async def test_cache_hit_leaves_memory_untouched(self, cache, memory, json_logger):
        await cache.store("hello", "cached hi", scope="1")
        dispatcher = make_dispatcher([FakeProvider("a")], {"a": 1}, cache, memory, json_logger)

        await dispatcher.handle("1", "hello")

        assert (await memory.load("1")).history == []

    @pytest.mark.asyncio
    async def test_cached_reply_not_shared_across_chats(self, cache, memory, json_logger):
        chat = FakeProvider(
            "chat", ["Nice to meet you!", "You are 17, Alice.", "I do not know yet.", "Got it."]
        )
        facts = FakeProvider("facts", ['{"age": 17}', "{}", "{}", '{"age": 17}'])
        dispatcher = make_dispatcher(
            [chat],
            {"chat": 10},
            cache,
            memory,
            json_logger,
            extractor=FactExtractor(facts),
        )

        await dispatcher.handle("alice", "I am 17", display_name="Alice")
        alice = await dispatcher.handle("alice", "How old am I?", display_name="Alice")
        bob = await dispatcher.handle("bob", "How old am I?", display_name="Bob")
        await dispatcher.handle("bob", "I am 17", display_name="Bob")

        assert alice.reply == "You are 17, Alice."
        assert bob.outcome == DispatchOutcome.ANSWERED
        assert bob.reply == "I do not know yet."
        bob_record = await memory.load("bob")
        assert bob_record.facts == {"age": 17}
        assert [t.content for t in bob_record.history] == [
            "How old am I?",
            "I do not know yet.",
            "I am 17",
            "Got it.",
        ]


class TestProviderFailure:
    @pytest.mark.asyncio
    async def test_failure_returns_retry_notice(self, cache, memory, json_logger):
        a = FakeProvider("a", error=provider_error())
        b = FakeProvider("b", ["from b"])
        dispatcher = make_dispatcher([a, b], {"a": 1, "b": 1}, cache, memory, json_logger)

        result = await dispatcher.handle("1", "hello")

        assert result.reply == PROVIDER_ERROR_MESSAGE
        assert result.outcome == DispatchOutcome.PROVIDER_ERROR
        assert result.provider_id == "a"
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_user_turn_recorded_without_assistant_turn(
        self, cache, memory, json_logger
    ):
        a = FakeProvider("a", error=provider_error())
        dispatcher = make_dispatcher([a], {"a": 1}, cache, memory, json_logger)

        await dispatcher.handle("1", "hello")

        assert (await memory.load("1")).history == [Turn("user", "hello")]

    @pytest.mark.asyncio
    async def test_failure_not_cached_and_quota_kept(self, cache, memory, json_logger):
        a = FakeProvider("a", error=provider_error())
        dispatcher = make_dispatcher([a], {"a": 3}, cache, memory, json_logger)

        await dispatcher.handle("1", "hello")

        assert await cache.lookup("hello", scope="1") is None
        assert dispatcher.quota.get("a").used_count == 1

    @pytest.mark.asyncio
    async def test_failure_logged(self, cache, memory, json_logger):
        a = FakeProvider("a", error=provider_error())
        dispatcher = make_dispatcher([a], {"a": 1}, cache, memory, json_logger)

        await dispatcher.handle("1", "hello")

        assert '"provider_error"' in json_logger.log_path.read_text()


class TestMemory:
    @pytest.mark.asyncio
    async def test_turns_persisted(self, cache, memory, json_logger):
        dispatcher = make_dispatcher(
            [FakeProvider("a", ["hey"])], {"a": 5}, cache, memory, json_logger
        )

        await dispatcher.handle("1", "hi")

        assert (await memory.load("1")).history == [
            Turn("user", "hi"),
            Turn("assistant", "hey"),
        ]

    @pytest.mark.asyncio
    async def test_history_sent_to_provider(self, cache, memory, json_logger):
        a = FakeProvider("a", ["r1", "r2"])
        dispatcher = make_dispatcher([a], {"a": 5}, cache, memory, json_logger)

        await dispatcher.handle("1", "first")
        await dispatcher.handle("1", "second")

        _, turns = a.calls[1]
        assert [t.content for t in turns] == ["first", "r1", "second"]

    @pytest.mark.asyncio
    async def test_history_trimmed_to_provider_budget(self, cache, memory, json_logger):
        a = FakeProvider("a", ["ok " * 20], max_context_tokens=40)
        dispatcher = make_dispatcher([a], {"a": 10}, cache, memory, json_logger)

        for i in range(4):
            await dispatcher.handle("1", f"message number {i}")

        _, turns = a.calls[-1]
        assert turns[-1] == Turn("user", "message number 3")
        assert len(turns) < 7

    @pytest.mark.asyncio
    async def test_registers_user(self, cache, memory, json_logger):
        dispatcher = make_dispatcher([FakeProvider("a")], {"a": 1}, cache, memory, json_logger)

        await dispatcher.handle("1", "hi", display_name="Ana")

        reg = await memory.registry.get("1")
        assert reg.display_name == "Ana"

    @pytest.mark.asyncio
    async def test_states_for_answered_request(self, cache, memory, json_logger):
        dispatcher = make_dispatcher([FakeProvider("a")], {"a": 1}, cache, memory, json_logger)

        result = await dispatcher.handle("1", "hi")

        assert result.states == [
            DispatchState.RECEIVED,
            DispatchState.CACHE_CHECK,
            DispatchState.PROVIDER_SELECT,
            DispatchState.MEMORY_LOAD,
            DispatchState.FACT_MERGE,
            DispatchState.PROVIDER_CALL,
            DispatchState.MEMORY_PERSIST,
            DispatchState.CACHE_STORE,
            DispatchState.REPLY,
            DispatchState.TERMINAL,
        ]


class TestFactScenario:
    @pytest.mark.asyncio
    async def test_age_fact_reaches_next_prompt(self, cache, memory, json_logger):
        facts_provider = FakeProvider("facts", ['{"age": 17}', "{}"])
        chat = FakeProvider("chat", ["Nice to meet you!", "You are 17."])
        dispatcher = make_dispatcher(
            [chat],
            {"chat": 10},
            cache,
            memory,
            json_logger,
            extractor=FactExtractor(facts_provider),
        )

        first = await dispatcher.handle("1", "I am 17")
        assert first.facts_delta == {"age": 17}
        assert (await memory.load("1")).facts == {"age": 17}

        await dispatcher.handle("1", "How old am I?")

        system_prompt, _ = chat.calls[1]
        assert '"age": 17' in system_prompt

    @pytest.mark.asyncio
    async def test_newer_fact_overwrites(self, cache, memory, json_logger):
        facts_provider = FakeProvider("facts", ['{"age": 17}', '{"age": 18, "city": "X"}'])
        dispatcher = make_dispatcher(
            [FakeProvider("chat", ["a", "b"])],
            {"chat": 10},
            cache,
            memory,
            json_logger,
            extractor=FactExtractor(facts_provider),
        )

        await dispatcher.handle("1", "I am 17")
        await dispatcher.handle("1", "I just turned 18 and live in X")

        assert (await memory.load("1")).facts == {"age": 18, "city": "X"}

    @pytest.mark.asyncio
    async def test_facts_kept_when_provider_fails(self, cache, memory, json_logger):
        dispatcher = make_dispatcher(
            [FakeProvider("chat", error=provider_error())],
            {"chat": 10},
            cache,
            memory,
            json_logger,
            extractor=FactExtractor(FakeProvider("facts", ['{"name": "Ana"}'])),
        )

        await dispatcher.handle("1", "I'm Ana")

        assert (await memory.load("1")).facts == {"name": "Ana"}

    @pytest.mark.asyncio
    async def test_garbage_extraction_keeps_existing_facts(self, cache, memory, json_logger):
        dispatcher = make_dispatcher(
            [FakeProvider("chat", ["a", "b"])],
            {"chat": 10},
            cache,
            memory,
            json_logger,
            extractor=FactExtractor(FakeProvider("facts", ['{"age": 17}', "garbage"])),
        )

        await dispatcher.handle("1", "I am 17")
        await dispatcher.handle("1", "blah")

        assert (await memory.load("1")).facts == {"age": 17}
