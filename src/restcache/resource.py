"""Resources: REST endpoints described as data records.

A resource bundles an entity key, an id rule, a url root, request options and
optional schema overrides. Variations are built with ``replace()`` rather than
subclassing:

    users = Resource("http://test.com/user/")
    articles = Resource("http://test.com/article/", nested={"author": users})
    cooler = articles.replace(url_root="http://test.com/article-cooler/")
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

from restcache.schema import Entity, MergeStrategy, ProcessStrategy
from restcache.shapes import RequestShape
from restcache.transport import Transport
from restcache.types import DEFAULT_OPTIONS, JSON, Method, Params, RequestOptions

SchemaOverride = Callable[[Entity], Any]
UrlBuilder = Callable[["Resource", Params | None], str | None]

_ENTITY_NEUTRAL_FIELDS = frozenset(
    {"url_root", "options", "transport", "url_builder", "schema_overrides"}
)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _as_schema_ref(value: Any) -> Any:
    """Swap resources for their entity schemas inside a nested definition."""
    if isinstance(value, Resource):
        return value.schema
    if isinstance(value, (list, tuple)):
        return [_as_schema_ref(item) for item in value]
    if isinstance(value, Mapping):
        return {name: _as_schema_ref(child) for name, child in value.items()}
    return value


@dataclass(frozen=True, eq=False)
class Resource:
    """An entity type served from one url root."""

    url_root: str
    name: str | None = None
    id_attribute: str | Callable[[Any], Any] = "id"
    nested: Mapping[str, Any] = field(default_factory=dict)
    options: RequestOptions = DEFAULT_OPTIONS
    transport: Transport | None = None
    url_builder: UrlBuilder | None = None
    schema_overrides: Mapping[str, SchemaOverride] = field(default_factory=dict)
    process_strategy: ProcessStrategy | None = None
    merge_strategy: MergeStrategy | None = None

    def __post_init__(self) -> None:
        entity = Entity(
            self.key,
            id_attribute=lambda value, parent, key: self.pk(value),
            process_strategy=self.process_strategy,
            merge_strategy=self.merge_strategy,
        )
        object.__setattr__(self, "_entity", entity)
        object.__setattr__(self, "_shapes", {})
        if self.nested:
            entity.define(_as_schema_ref(self.nested))

    @property
    def key(self) -> str:
        """Globally unique entity key; defaults to the url root."""
        return self.name or self.url_root

    @property
    def schema(self) -> Entity:
        return self._entity  # type: ignore[attr-defined]

    def define(self, nested: Mapping[str, Any]) -> Resource:
        """Add relationships after construction (needed for cycles)."""
        self.schema.define(_as_schema_ref(nested))
        return self

    def replace(self, **changes: Any) -> Resource:
        """Derive a new resource overriding some fields.

        When the entity key and identity rules are unchanged the derived
        resource shares this resource's entity schema, so both can be used
        against the same cache.
        """
        derived = dataclasses.replace(self, **changes)
        if derived.key == self.key and changes.keys() <= _ENTITY_NEUTRAL_FIELDS:
            object.__setattr__(derived, "_entity", self.schema)
        return derived

    def __repr__(self) -> str:
        return f"Resource({self.key!r})"

    # -------------------------------------------------------------------------
    # Identity and urls
    # -------------------------------------------------------------------------

    def pk(self, params: Any) -> Any:
        """Primary key found in ``params``, or ``None``."""
        if callable(self.id_attribute):
            return self.id_attribute(params)
        if isinstance(params, Mapping):
            return params.get(self.id_attribute)
        return None

    def url(self, params: Params | None = None) -> str:
        """Url of a single record."""
        if params:
            explicit = params.get("url")
            if isinstance(explicit, str) and explicit:
                return explicit
            if self.url_builder is not None:
                built = self.url_builder(self, params)
                if built is not None:
                    return built
            pk = self.pk(params)
            if pk is not None:
                return f"{self.url_root}{pk}"
        return self.url_root

    def list_url(self, params: Params | None = None) -> str:
        """Url of a collection, with query parameters sorted by name."""
        if params:
            query = urlencode(
                sorted((name, _query_value(value)) for name, value in params.items())
            )
            return f"{self.url_root}?{query}"
        return self.url_root

    async def fetch(
        self,
        transport: Transport,
        method: Method,
        url: str,
        body: Any = None,
    ) -> JSON:
        """Perform a request with this resource's transport, if it has one."""
        return await (self.transport or transport)(method, url, body)

    # -------------------------------------------------------------------------
    # Shapes
    # -------------------------------------------------------------------------

    def _shape_schema(self, name: str, default: Any) -> Any:
        override = self.schema_overrides.get(name)
        return override(self.schema) if override is not None else default

    def _shape(
        self,
        name: str,
        type_: str,
        method: Method,
        url: Callable[[Params | None], str],
        default_schema: Any,
    ) -> RequestShape:
        shapes: dict[str, RequestShape] = self._shapes  # type: ignore[attr-defined]
        shape = shapes.get(name)
        if shape is not None:
            return shape

        async def fetch(transport: Transport, params: Params, body: Any = None) -> JSON:
            return await self.fetch(transport, method, url(params), body)

        shape = RequestShape(
            type=type_,  # type: ignore[arg-type]
            schema=self._shape_schema(name, default_schema),
            get_fetch_key=lambda params: f"{method.upper()} {url(params)}",
            fetch=fetch,
            options=self.options,
        )
        shapes[name] = shape
        return shape

    def detail_shape(self) -> RequestShape:
        """Shape to get a single entity."""
        return self._shape("detail", "read", "get", self.url, self.schema)

    def list_shape(self) -> RequestShape:
        """Shape to get a list of entities."""
        return self._shape("list", "read", "get", self.list_url, [self.schema])

    def create_shape(self) -> RequestShape:
        """Shape to create a new entity (post)."""
        return self._shape("create", "mutate", "post", self.list_url, self.schema)

    def update_shape(self) -> RequestShape:
        """Shape to update an existing entity (put)."""
        return self._shape("update", "mutate", "put", self.url, self.schema)

    def partial_update_shape(self) -> RequestShape:
        """Shape to update a subset of fields of an existing entity (patch)."""
        return self._shape("partial_update", "mutate", "patch", self.url, self.schema)

    def delete_shape(self) -> RequestShape:
        """Shape to delete an entity (delete)."""
        return self._shape("delete", "delete", "delete", self.url, self.schema)


__all__ = ["Resource"]
