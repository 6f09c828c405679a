"""Schema model describing how JSON payloads map to entities.

This module provides:
- Entity: one record type, identified by a computed id
- Array: a child schema applied to every element of a list
- Object: a fixed-shape mapping of field name to child schema
- as_schema(): coercion of ``[schema]`` / ``{field: schema}`` shorthand
- SchemaRegistry: explicit entity-key registry owned by a cache instance

Schemas may reference each other, including cyclically. Use
``Entity.define()`` after construction to close a cycle:

    article = Entity("articles")
    comment = Entity("comments", {"article": article})
    article.define({"comments": [comment]})
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from typing import Any, TypeAlias

from restcache.errors import InvalidSchemaError

IdAttribute = Callable[[Any, Any, Any], Any]
ProcessStrategy = Callable[[Any, Any, Any], Any]
MergeStrategy = Callable[[Any, Any], Any]


def _default_id_attribute(value: Any, parent: Any, key: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("id")
    return None


def _default_process(value: Any, parent: Any, key: Any) -> Any:
    return dict(value)


def merge_defined(existing: Any, incoming: Any) -> Any:
    """Shallow merge where fields present on ``incoming`` win.

    Fields absent from ``incoming`` keep their existing value, so a partial
    copy of an entity never clobbers what is already known about it.
    """
    if isinstance(existing, Mapping) and isinstance(incoming, Mapping):
        return {**existing, **incoming}
    return incoming


# =============================================================================
# Schema kinds
# =============================================================================


class Entity:
    """A single addressable record type."""

    __slots__ = (
        "_id_attribute",
        "_key",
        "_merge_strategy",
        "_process_strategy",
        "_schema",
    )

    def __init__(
        self,
        key: str,
        definition: Mapping[str, Any] | None = None,
        *,
        id_attribute: IdAttribute | None = None,
        process_strategy: ProcessStrategy | None = None,
        merge_strategy: MergeStrategy | None = None,
    ) -> None:
        if not isinstance(key, str) or not key:
            raise InvalidSchemaError(f"Entity key must be a non-empty string, got {key!r}")
        self._key = key
        self._schema: dict[str, Schema] = {}
        self._id_attribute = id_attribute or _default_id_attribute
        self._process_strategy = process_strategy or _default_process
        self._merge_strategy = merge_strategy or merge_defined
        if definition:
            self.define(definition)

    @property
    def key(self) -> str:
        return self._key

    @property
    def schema(self) -> Mapping[str, Schema]:
        """Nested field schemas."""
        return self._schema

    def define(self, definition: Mapping[str, Any]) -> Entity:
        """Add or replace nested field schemas."""
        if not isinstance(definition, Mapping):
            raise InvalidSchemaError(
                f"Entity definition must be a mapping, got {type(definition).__name__}"
            )
        for name, child in definition.items():
            self._schema[name] = as_schema(child)
        return self

    def get_id(self, value: Any, parent: Any = None, key: Any = None) -> str | None:
        """Compute the canonical string id, falling back to the structural key."""
        raw = self._id_attribute(value, parent, key)
        if raw is None:
            raw = key
        if raw is None:
            return None
        return str(raw)

    def process(self, value: Any, parent: Any = None, key: Any = None) -> Any:
        return self._process_strategy(value, parent, key)

    def merge(self, existing: Any, incoming: Any) -> Any:
        return self._merge_strategy(existing, incoming)

    def __repr__(self) -> str:
        return f"Entity({self._key!r})"


class Array:
    """Applies one child schema to every element of a list."""

    __slots__ = ("_schema",)

    def __init__(self, schema: Any) -> None:
        self._schema = as_schema(schema)

    @property
    def schema(self) -> Schema:
        return self._schema

    def __repr__(self) -> str:
        return f"Array({self._schema!r})"


class Object:
    """Applies child schemas to the same-named fields of a mapping.

    Fields without a schema (``nextPage`` and similar pagination data) pass
    through untouched.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Any]) -> None:
        if not isinstance(fields, Mapping):
            raise InvalidSchemaError(
                f"Object schema needs a mapping, got {type(fields).__name__}"
            )
        self._fields: dict[str, Schema] = {}
        self.define(fields)

    @property
    def fields(self) -> Mapping[str, Schema]:
        return self._fields

    def define(self, fields: Mapping[str, Any]) -> Object:
        for name, child in fields.items():
            self._fields[name] = as_schema(child)
        return self

    def __repr__(self) -> str:
        return f"Object({dict(self._fields)!r})"


Schema: TypeAlias = Entity | Array | Object


def as_schema(value: Any) -> Schema:
    """Coerce shorthand into a schema node.

    ``[schema]`` becomes an ``Array`` and ``{field: schema}`` an ``Object``.
    """
    if isinstance(value, (Entity, Array, Object)):
        return value
    if isinstance(value, (list, tuple)):
        if len(value) != 1:
            raise InvalidSchemaError(
                f"List schema shorthand takes exactly one child schema, got {len(value)}"
            )
        return Array(value[0])
    if isinstance(value, Mapping):
        return Object(value)
    raise InvalidSchemaError(f"Not a schema: {value!r}")


def schema_kind(schema: Schema) -> str:
    """Short name of the shape a schema expects."""
    if isinstance(schema, Entity):
        return "entity"
    if isinstance(schema, Array):
        return "list"
    return "object"


def value_kind(value: Any) -> str:
    """Short name of the shape a payload or stored result has."""
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "list"
    return "entity"


def iter_entities(schema: Schema) -> Iterator[Entity]:
    """Yield every entity reachable from ``schema`` once, following cycles safely."""
    seen: set[int] = set()
    stack: list[Schema] = [schema]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if isinstance(node, Entity):
            yield node
            stack.extend(node.schema.values())
        elif isinstance(node, Array):
            stack.append(node.schema)
        elif isinstance(node, Object):
            stack.extend(node.fields.values())
        else:
            raise InvalidSchemaError(f"Not a schema: {node!r}")


def validate_schema(schema: Any) -> Schema:
    """Coerce and check a whole schema graph, raising InvalidSchemaError."""
    root = as_schema(schema)
    keys: dict[str, Entity] = {}
    for entity in iter_entities(root):
        other = keys.setdefault(entity.key, entity)
        if other is not entity:
            raise InvalidSchemaError(
                f"Two different entity schemas share the key {entity.key!r}"
            )
    return root


# =============================================================================
# Registry
# =============================================================================


class SchemaRegistry:
    """Maps entity keys to the one ``Entity`` allowed to own each key.

    Owned by a cache instance; ``clear()`` is its teardown.
    """

    def __init__(self) -> None:
        self._entities: dict[str, Entity] = {}

    def register(self, schema: Any) -> Schema:
        """Register every entity reachable from ``schema``."""
        root = validate_schema(schema)
        for entity in iter_entities(root):
            existing = self._entities.get(entity.key)
            if existing is None:
                self._entities[entity.key] = entity
            elif existing is not entity:
                raise InvalidSchemaError(
                    f"Entity key {entity.key!r} is already registered "
                    "to a different schema"
                )
        return root

    def get(self, key: str) -> Entity | None:
        return self._entities.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def clear(self) -> None:
        self._entities.clear()


__all__ = [
    "Array",
    "Entity",
    "Object",
    "Schema",
    "SchemaRegistry",
    "as_schema",
    "iter_entities",
    "merge_defined",
    "schema_kind",
    "validate_schema",
    "value_kind",
]
