"""Request dispatch: cache, quota-gated fallback chain and memory."""

from .dispatcher import (
    PROVIDER_ERROR_MESSAGE,
    QUOTA_EXHAUSTED_MESSAGE,
    DispatchOutcome,
    DispatchResult,
    DispatchState,
    Dispatcher,
)
from .prompt import build_system_prompt

__all__ = [
    "PROVIDER_ERROR_MESSAGE",
    "QUOTA_EXHAUSTED_MESSAGE",
    "DispatchOutcome",
    "DispatchResult",
    "DispatchState",
    "Dispatcher",
    "build_system_prompt",
]
