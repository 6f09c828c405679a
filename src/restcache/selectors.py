"""Denormalization: rebuild object graphs from a cache snapshot.

Provides:
- denormalize(): one-shot reconstruction for a schema and fetch key
- SchemaSelector: memoized reconstruction that returns the identical object
  while nothing it depends on has changed
- select_results() / select_meta(): raw table access
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from restcache.duration import now_ms
from restcache.errors import ShapeMismatchError
from restcache.schema import (
    Array,
    Entity,
    Object,
    Schema,
    as_schema,
    validate_schema,
    value_kind,
)
from restcache.state import Meta, State
from restcache.types import DEFAULT_OPTIONS, Params, RequestOptions

_MISSING: Any = object()
_NO_TABLE: Mapping[str, Any] = {}

Dependency = tuple[str, str, Any]


def _pk_seed(schema: Schema, params: Params | None) -> Any:
    """Build a seed result from params alone, when the schema allows it."""
    if not isinstance(params, Mapping):
        return None
    if isinstance(schema, Entity):
        return schema.get_id(params)
    if isinstance(schema, Object):
        paths = [
            (name, child)
            for name, child in schema.fields.items()
            if not isinstance(child, Array)
        ]
        if len(paths) == 1:
            name, child = paths[0]
            inner = _pk_seed(child, params)
            if inner is not None:
                return {name: inner}
    return None


def _seed(
    state: State, schema: Schema, fetch_key: str, params: Params | None
) -> tuple[Any, bool]:
    """Return the seed result and whether it was derived from params."""
    # The results table is authoritative whenever it has an entry.
    if fetch_key in state.results:
        return state.results[fetch_key], False
    seed = _pk_seed(schema, params)
    return (_MISSING if seed is None else seed), True


class _Walker:
    """Resolves one seed result, recording every entity lookup it makes."""

    __slots__ = ("_built", "_entities", "_fetch_key", "deps")

    def __init__(self, entities: Mapping[str, Mapping[str, Any]], fetch_key: str) -> None:
        self._entities = entities
        self._fetch_key = fetch_key
        self._built: dict[tuple[str, str], Any] = {}
        self.deps: list[Dependency] = []

    def resolve(self, seed: Any, schema: Schema, from_params: bool) -> Any:
        value = self.visit(seed, schema)
        # A seed guessed from params is only as good as the entity it names.
        if from_params and self.deps and self.deps[0][2] is None:
            return None
        return value

    def visit(self, value: Any, schema: Schema) -> Any:
        if value is None:
            return None
        if isinstance(schema, Entity):
            return self._entity(value, schema)
        if isinstance(schema, Array):
            return self._array(value, schema)
        return self._object(value, schema)

    def _entity(self, value: Any, schema: Entity) -> Any:
        if isinstance(value, (Mapping, list, tuple)):
            raise ShapeMismatchError(self._fetch_key, "entity", value_kind(value))

        entity_id = str(value)
        entity = self._entities.get(schema.key, _NO_TABLE).get(entity_id)
        self.deps.append((schema.key, entity_id, entity))
        if entity is None or not schema.schema or not isinstance(entity, Mapping):
            return entity

        ref = (schema.key, entity_id)
        if ref in self._built:
            return self._built[ref]
        out = dict(entity)
        # Registered before recursing so cycles resolve to this same object.
        self._built[ref] = out
        for field, child in schema.schema.items():
            if out.get(field) is not None:
                out[field] = self.visit(out[field], child)
        return out

    def _array(self, value: Any, schema: Array) -> Any:
        if not isinstance(value, (list, tuple)):
            raise ShapeMismatchError(self._fetch_key, "list", value_kind(value))
        resolved = []
        for item in value:
            child = self.visit(item, schema.schema)
            # Missing entities are dropped to tolerate partial eviction.
            if child is not None:
                resolved.append(child)
        return resolved

    def _object(self, value: Any, schema: Object) -> Any:
        if not isinstance(value, Mapping):
            raise ShapeMismatchError(self._fetch_key, "object", value_kind(value))
        out = dict(value)
        for field, child in schema.fields.items():
            if out.get(field) is not None:
                out[field] = self.visit(out[field], child)
        return out


def denormalize(
    state: State,
    schema: Any,
    fetch_key: str,
    params: Params | None = None,
) -> Any | None:
    """Rebuild the value for ``fetch_key``, or ``None`` when it is not cached.

    Raises:
        ShapeMismatchError: the stored result does not fit ``schema``
    """
    root = as_schema(schema)
    seed, from_params = _seed(state, root, fetch_key, params)
    if seed is _MISSING:
        return None
    return _Walker(state.entities, fetch_key).resolve(seed, root, from_params)


def select_results(state: State, fetch_key: str) -> Any | None:
    """Raw normalized result for ``fetch_key`` (pagination fields included)."""
    return state.results.get(fetch_key)


def select_meta(state: State, fetch_key: str) -> Meta | None:
    return state.meta.get(fetch_key)


# =============================================================================
# Memoized selector
# =============================================================================


@dataclass(slots=True)
class _Memo:
    entities: Mapping[str, Mapping[str, Any]]
    seed: Any
    deps: tuple[Dependency, ...]
    value: Any

    def matches(self, entities: Mapping[str, Mapping[str, Any]], seed: Any) -> bool:
        if not (self.seed is seed or self.seed == seed):
            return False
        if self.entities is entities:
            return True
        for key, entity_id, entity in self.deps:
            if entities.get(key, _NO_TABLE).get(entity_id) is not entity:
                return False
        self.entities = entities
        return True


class SchemaSelector:
    """Memoized denormalizer for one schema and fetch-key function.

    Calling it with a state whose relevant slice is unchanged returns the
    identical object as the previous call. The relevant slice is the seed
    result plus every entity reached while resolving it, so unrelated entity
    updates never produce a new value and dependency updates always do.
    """

    __slots__ = ("_get_fetch_key", "_max_entries", "_memo", "_options", "_schema")

    def __init__(
        self,
        schema: Any,
        get_fetch_key: Callable[[Params], str],
        *,
        options: RequestOptions | None = None,
        max_entries: int = 256,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._schema = validate_schema(schema)
        self._get_fetch_key = get_fetch_key
        self._options = options or DEFAULT_OPTIONS
        self._max_entries = max_entries
        self._memo: OrderedDict[str, _Memo] = OrderedDict()

    @property
    def schema(self) -> Schema:
        return self._schema

    def __call__(
        self,
        state: State,
        params: Params | None,
        *,
        now: float | None = None,
    ) -> Any | None:
        if params is None:
            return None
        fetch_key = self._get_fetch_key(params)
        if self._options.invalid_if_stale:
            meta = state.meta.get(fetch_key)
            current = now if now is not None else now_ms()
            if meta is None or meta.is_stale(current):
                return None
        return self.select(state, fetch_key, params)

    def select(self, state: State, fetch_key: str, params: Params | None = None) -> Any:
        """Resolve ``fetch_key`` ignoring staleness."""
        seed, from_params = _seed(state, self._schema, fetch_key, params)
        if seed is _MISSING:
            return None

        memo = self._memo.get(fetch_key)
        if memo is not None and memo.matches(state.entities, seed):
            self._memo.move_to_end(fetch_key)
            return memo.value

        walker = _Walker(state.entities, fetch_key)
        value = walker.resolve(seed, self._schema, from_params)
        self._memo[fetch_key] = _Memo(
            entities=state.entities,
            seed=seed,
            deps=tuple(walker.deps),
            value=value,
        )
        self._memo.move_to_end(fetch_key)
        if len(self._memo) > self._max_entries:
            self._memo.popitem(last=False)
        return value


def make_schema_selector(
    schema: Any,
    get_fetch_key: Callable[[Params], str],
    *,
    options: RequestOptions | None = None,
) -> SchemaSelector:
    """Build a memoized selector, validating ``schema`` up front.

    Raises:
        InvalidSchemaError: ``schema`` is not a valid schema description
    """
    return SchemaSelector(schema, get_fetch_key, options=options)


__all__ = [
    "SchemaSelector",
    "denormalize",
    "make_schema_selector",
    "select_meta",
    "select_results",
]
