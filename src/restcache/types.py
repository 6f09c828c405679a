"""Core types for restcache."""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any, Literal

# Duration type alias
Duration = str | int | float  # "30s", "5m", "2h", "1d", math.inf or milliseconds

JSON = Any
Params = Mapping[str, Any]

Method = Literal["get", "post", "put", "patch", "delete"]
ShapeType = Literal["read", "mutate", "delete"]


@dataclass(frozen=True, slots=True)
class RequestOptions:
    """Per-shape freshness policy. ``None`` falls back to client defaults."""

    data_expiry_length: Duration | None = None
    error_expiry_length: Duration | None = None
    poll_frequency: Duration | None = None
    invalid_if_stale: bool = False

    def merge(self, other: "RequestOptions | None") -> "RequestOptions":
        """Overlay the fields ``other`` sets on top of these options."""
        if other is None:
            return self
        return replace(
            self,
            data_expiry_length=(
                other.data_expiry_length
                if other.data_expiry_length is not None
                else self.data_expiry_length
            ),
            error_expiry_length=(
                other.error_expiry_length
                if other.error_expiry_length is not None
                else self.error_expiry_length
            ),
            poll_frequency=(
                other.poll_frequency
                if other.poll_frequency is not None
                else self.poll_frequency
            ),
            invalid_if_stale=other.invalid_if_stale or self.invalid_if_stale,
        )


DEFAULT_OPTIONS = RequestOptions()
