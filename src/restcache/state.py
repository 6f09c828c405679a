"""Cache state snapshot and the actions that transition it."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Meta:
    """Freshness metadata for one fetch key."""

    date: float  # Unix timestamp ms of completion
    expires_at: float
    error_expiry_length: float | None = None
    error: BaseException | None = None
    fetched_at: float | None = None  # when the settling fetch started

    def is_stale(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True, slots=True)
class State:
    """One immutable snapshot of the cache.

    Replaced wholesale on every transition; tables are never patched.
    """

    entities: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    results: Mapping[str, Any] = field(default_factory=dict)
    meta: Mapping[str, Meta] = field(default_factory=dict)


def initial_state() -> State:
    return State()


# =============================================================================
# Actions
# =============================================================================


@dataclass(frozen=True, slots=True)
class RequestAction:
    """A fetch for ``fetch_key`` started. Does not change committed state."""

    fetch_key: str


@dataclass(frozen=True, slots=True)
class ReceiveAction:
    fetch_key: str
    schema: Any
    payload: Any
    date: float
    expires_at: float
    fetched_at: float | None = None


@dataclass(frozen=True, slots=True)
class ReceiveErrorAction:
    fetch_key: str
    error: BaseException
    date: float
    error_expiry_length: float
    fetched_at: float | None = None


@dataclass(frozen=True, slots=True)
class InvalidateAction:
    fetch_key: str


@dataclass(frozen=True, slots=True)
class PurgeAction:
    """Drop one entity after a delete, plus the delete key's meta entry."""

    fetch_key: str
    schema_key: str
    entity_id: str | None


@dataclass(frozen=True, slots=True)
class ResetAction:
    pass


Action = (
    RequestAction
    | ReceiveAction
    | ReceiveErrorAction
    | InvalidateAction
    | PurgeAction
    | ResetAction
)


__all__ = [
    "Action",
    "InvalidateAction",
    "Meta",
    "PurgeAction",
    "ReceiveAction",
    "ReceiveErrorAction",
    "RequestAction",
    "ResetAction",
    "State",
    "initial_state",
]
