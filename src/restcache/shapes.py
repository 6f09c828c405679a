"""Request shapes: declarative descriptions of one API operation."""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from restcache.schema import as_schema
from restcache.transport import Transport
from restcache.types import (
    DEFAULT_OPTIONS,
    JSON,
    Duration,
    Params,
    RequestOptions,
    ShapeType,
)

ShapeFetch = Callable[[Transport, Params, Any], Awaitable[JSON]]

_SHAPE_TYPES = ("read", "mutate", "delete")


@dataclass(frozen=True, eq=False)
class RequestShape:
    """One operation: schema, fetch-key function, network function and options.

    Shapes compare and hash by identity. Resources hand out the same shape
    object on every call so selectors memoized per shape stay valid.
    """

    type: ShapeType
    schema: Any
    get_fetch_key: Callable[[Params], str]
    fetch: ShapeFetch
    options: RequestOptions = DEFAULT_OPTIONS

    def __post_init__(self) -> None:
        if self.type not in _SHAPE_TYPES:
            raise ValueError(f"Unknown shape type: {self.type!r}")
        object.__setattr__(self, "schema", as_schema(self.schema))

    def replace(self, **changes: Any) -> RequestShape:
        """Derive a new shape overriding some fields."""
        return dataclasses.replace(self, **changes)

    def with_options(
        self,
        *,
        data_expiry_length: Duration | None = None,
        error_expiry_length: Duration | None = None,
        poll_frequency: Duration | None = None,
        invalid_if_stale: bool = False,
    ) -> RequestShape:
        """Derive a new shape with options overlaid on the current ones."""
        return self.replace(
            options=self.options.merge(
                RequestOptions(
                    data_expiry_length=data_expiry_length,
                    error_expiry_length=error_expiry_length,
                    poll_frequency=poll_frequency,
                    invalid_if_stale=invalid_if_stale,
                )
            )
        )


__all__ = ["RequestShape", "ShapeFetch"]
