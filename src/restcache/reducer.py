"""Pure state transitions for the cache."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from restcache.normalize import EntityTable, normalize
from restcache.schema import Entity, as_schema, iter_entities
from restcache.state import (
    Action,
    InvalidateAction,
    Meta,
    PurgeAction,
    ReceiveAction,
    ReceiveErrorAction,
    RequestAction,
    ResetAction,
    State,
    initial_state,
)

logger = structlog.get_logger(__name__)


def reduce(state: State, action: Action) -> State:
    """Apply ``action`` to ``state`` and return the next snapshot.

    Normalization runs before any table is copied, so a malformed payload
    raises without producing a partially applied state.
    """
    if isinstance(action, ReceiveAction):
        return _receive(state, action)
    if isinstance(action, ReceiveErrorAction):
        return _receive_error(state, action)
    if isinstance(action, InvalidateAction):
        if action.fetch_key not in state.meta:
            return state
        meta = dict(state.meta)
        del meta[action.fetch_key]
        return State(entities=state.entities, results=state.results, meta=meta)
    if isinstance(action, PurgeAction):
        return _purge(state, action)
    if isinstance(action, ResetAction):
        return initial_state()
    if isinstance(action, RequestAction):
        return state
    raise TypeError(f"Unknown action: {action!r}")


def _is_outdated(
    existing: Meta | None, date: float, fetched_at: float | None
) -> bool:
    """Whether a completion would regress the committed meta entry."""
    if existing is None:
        return False
    if date < existing.date:
        return True
    return (
        fetched_at is not None
        and existing.fetched_at is not None
        and fetched_at < existing.fetched_at
    )


def _receive(state: State, action: ReceiveAction) -> State:
    existing = state.meta.get(action.fetch_key)
    if _is_outdated(existing, action.date, action.fetched_at):
        logger.info(
            "receive_rejected_outdated",
            fetch_key=action.fetch_key,
            date=action.date,
            committed_date=existing.date if existing else None,
        )
        return state

    schema = as_schema(action.schema)
    normalized = normalize(action.payload, schema)
    entities = _merge_entities(state.entities, normalized.entities, schema)

    results = dict(state.results)
    if not (
        action.fetch_key in state.results
        and state.results[action.fetch_key] == normalized.result
    ):
        results[action.fetch_key] = normalized.result
    meta = dict(state.meta)
    meta[action.fetch_key] = Meta(
        date=action.date,
        expires_at=action.expires_at,
        fetched_at=action.fetched_at,
    )
    return State(entities=entities, results=results, meta=meta)


def _merge_entities(
    current: Mapping[str, Mapping[str, Any]],
    incoming: EntityTable,
    schema: Any,
) -> Mapping[str, Mapping[str, Any]]:
    if not incoming:
        return current

    schemas: dict[str, Entity] = {entity.key: entity for entity in iter_entities(schema)}
    merged: dict[str, Mapping[str, Any]] | None = None
    for key, table in incoming.items():
        existing_table = current.get(key, {})
        entity_schema = schemas[key]
        new_table: dict[str, Any] | None = None
        for entity_id, entity in table.items():
            old = existing_table.get(entity_id)
            value = entity if old is None else entity_schema.merge(old, entity)
            if old is not None and value == old:
                # Keep the committed object so memoized selectors stay stable.
                continue
            if new_table is None:
                new_table = dict(existing_table)
            new_table[entity_id] = value
        if new_table is not None:
            if merged is None:
                merged = dict(current)
            merged[key] = new_table
    return current if merged is None else merged


def _receive_error(state: State, action: ReceiveErrorAction) -> State:
    existing = state.meta.get(action.fetch_key)
    if _is_outdated(existing, action.date, action.fetched_at):
        logger.info(
            "receive_error_rejected_outdated",
            fetch_key=action.fetch_key,
            date=action.date,
        )
        return state

    meta = dict(state.meta)
    meta[action.fetch_key] = Meta(
        date=action.date,
        expires_at=action.date + action.error_expiry_length,
        error_expiry_length=action.error_expiry_length,
        error=action.error,
        fetched_at=action.fetched_at,
    )
    return State(entities=state.entities, results=state.results, meta=meta)


def _purge(state: State, action: PurgeAction) -> State:
    entities = state.entities
    table = entities.get(action.schema_key, {})
    if action.entity_id is not None and action.entity_id in table:
        new_table = dict(table)
        del new_table[action.entity_id]
        entities = dict(entities)
        entities[action.schema_key] = new_table
        logger.debug(
            "entity_purged", schema=action.schema_key, entity_id=action.entity_id
        )

    meta = state.meta
    if action.fetch_key in meta:
        meta = dict(meta)
        del meta[action.fetch_key]
    if entities is state.entities and meta is state.meta:
        return state
    return State(entities=entities, results=state.results, meta=meta)


__all__ = ["reduce"]
