"""Error taxonomy for the dispatch core."""

from enum import Enum


class CodyError(Exception):
    """Base class for all Cody errors."""


class QuotaExhausted(CodyError):
    """Every provider in the fallback chain is out of quota."""


class ProviderErrorKind(Enum):
    """Why a provider call failed."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    UPSTREAM = "upstream"


class ProviderError(CodyError):
    """A provider call failed. Transient; never retried within the same turn."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str = "",
        provider_id: str | None = None,
    ) -> None:
        self.kind = kind
        self.provider_id = provider_id
        super().__init__(message or kind.value)


class FactParseError(CodyError):
    """The fact extraction response could not be parsed."""


class StoreUnavailable(CodyError):
    """The durable store could not be reached."""


class UnknownProviderError(CodyError):
    """A provider in the chain has no configured quota."""
