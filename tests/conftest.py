"""Shared fixtures and fakes."""

from pathlib import Path
from typing import Sequence

import pytest

from cody.errors import ProviderError, ProviderErrorKind
from cody.logging import JSONLLogger
from cody.memory.models import Turn
from cody.providers import Provider
from cody.store import SQLiteStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider(Provider):
    """Provider returning canned replies and recording every call."""

    def __init__(
        self,
        provider_id: str = "fake",
        replies: Sequence[str] | None = None,
        error: ProviderError | None = None,
        max_context_tokens: int = 6000,
    ) -> None:
        self._provider_id = provider_id
        self.replies = list(replies or ["ok"])
        self.error = error
        self.max_context_tokens = max_context_tokens
        self.calls: list[tuple[str, list[Turn]]] = []

    @property
    def provider_id(self) -> str:
        return self._provider_id

    async def generate(self, system_prompt: str, turns: Sequence[Turn]) -> str:
        self.calls.append((system_prompt, list(turns)))
        if self.error is not None:
            raise self.error
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def provider_error(kind: ProviderErrorKind = ProviderErrorKind.TIMEOUT) -> ProviderError:
    return ProviderError(kind, "boom", "fake")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def json_logger(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path / "logs")


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> SQLiteStore:
    """Create a SQLiteStore with a temporary database and a fake clock."""
    store = SQLiteStore(tmp_path / "test.db", clock=clock)
    store.init_db()
    yield store
    if store._conn is not None:
        store._conn.close()
