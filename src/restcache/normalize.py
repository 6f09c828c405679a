"""Flatten nested JSON payloads into per-type entity tables."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from restcache.errors import MissingIdentityError, ShapeMismatchError
from restcache.schema import Array, Entity, Object, as_schema, value_kind

logger = structlog.get_logger(__name__)

EntityTable = dict[str, dict[str, Any]]


@dataclass(frozen=True, slots=True)
class Normalized:
    """Output of ``normalize``: flat entity tables plus a reference-shaped result."""

    entities: EntityTable
    result: Any


def normalize(payload: Any, schema: Any) -> Normalized:
    """Normalize ``payload`` against ``schema``.

    Every embedded entity is extracted into ``entities[key][id]`` and replaced
    by its id in the returned result. Repeated copies of the same entity are
    combined with the entity's merge strategy.

    Raises:
        MissingIdentityError: an entity outside a list has no usable id
        ShapeMismatchError: a value does not have the shape its schema expects
    """
    entities: EntityTable = {}
    result = _visit(payload, as_schema(schema), None, None, entities)
    return Normalized(entities=entities, result=result)


def _visit(
    value: Any,
    schema: Any,
    parent: Any,
    key: Any,
    entities: EntityTable,
) -> Any:
    if value is None:
        return None
    if isinstance(schema, Entity):
        return _visit_entity(value, schema, parent, key, entities)
    if isinstance(schema, Array):
        return _visit_array(value, schema, parent, key, entities)
    if isinstance(schema, Object):
        return _visit_object(value, schema, entities)
    return value


def _visit_entity(
    value: Any,
    schema: Entity,
    parent: Any,
    key: Any,
    entities: EntityTable,
) -> Any:
    if isinstance(value, (list, tuple)):
        raise ShapeMismatchError(None, "entity", "list")
    # Scalars in an entity position are already references.
    if not isinstance(value, Mapping):
        return str(value)

    entity_id = schema.get_id(value, parent, key)
    if entity_id is None:
        raise MissingIdentityError(schema.key)

    processed = schema.process(value, parent, key)
    if schema.schema and isinstance(processed, Mapping) and not isinstance(processed, dict):
        processed = dict(processed)
    for field, child in schema.schema.items():
        if isinstance(processed, Mapping) and processed.get(field) is not None:
            processed[field] = _visit(processed[field], child, processed, field, entities)

    table = entities.setdefault(schema.key, {})
    if entity_id in table:
        table[entity_id] = schema.merge(table[entity_id], processed)
    else:
        table[entity_id] = processed
    return entity_id


def _visit_array(
    value: Any,
    schema: Array,
    parent: Any,
    key: Any,
    entities: EntityTable,
) -> Any:
    if not isinstance(value, (list, tuple)):
        raise ShapeMismatchError(None, "list", value_kind(value))

    result = []
    for index, item in enumerate(value):
        try:
            result.append(_visit(item, schema.schema, value, None, entities))
        except MissingIdentityError as exc:
            logger.warning(
                "normalize_skipped_item",
                schema=exc.schema_key,
                index=index,
                parent_key=key,
            )
    return result


def _visit_object(value: Any, schema: Object, entities: EntityTable) -> Any:
    if not isinstance(value, Mapping):
        raise ShapeMismatchError(None, "object", value_kind(value))

    result = dict(value)
    for field, child in schema.fields.items():
        if result.get(field) is not None:
            result[field] = _visit(result[field], child, value, field, entities)
    return result


__all__ = ["EntityTable", "Normalized", "normalize"]
