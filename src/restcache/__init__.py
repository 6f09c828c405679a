"""restcache - normalized client-side cache for REST APIs."""

# Client
from restcache.client import RestCache, Subscription

# Single-flight fetching
from restcache.coordinator import FetchCoordinator, PendingFetch

# Duration parsing
from restcache.duration import parse_duration

# Errors
from restcache.errors import (
    FetchError,
    InvalidSchemaError,
    MissingIdentityError,
    RestCacheError,
    ShapeMismatchError,
)

# Normalization engine
from restcache.normalize import Normalized, normalize
from restcache.reducer import reduce

# Resources and shapes
from restcache.resource import Resource

# Schema model
from restcache.schema import Array, Entity, Object, SchemaRegistry, as_schema

# Selectors
from restcache.selectors import (
    SchemaSelector,
    denormalize,
    make_schema_selector,
    select_meta,
    select_results,
)
from restcache.shapes import RequestShape

# State and actions
from restcache.state import (
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
from restcache.transport import HttpxTransport, Transport

# Core types
from restcache.types import Duration, RequestOptions

__version__ = "0.1.0"

__all__ = [
    "Array",
    "Duration",
    "Entity",
    "FetchCoordinator",
    "FetchError",
    "HttpxTransport",
    "InvalidSchemaError",
    "InvalidateAction",
    "Meta",
    "MissingIdentityError",
    "Normalized",
    "Object",
    "PendingFetch",
    "PurgeAction",
    "ReceiveAction",
    "ReceiveErrorAction",
    "RequestAction",
    "RequestOptions",
    "RequestShape",
    "ResetAction",
    "Resource",
    "RestCache",
    "RestCacheError",
    "SchemaRegistry",
    "SchemaSelector",
    "ShapeMismatchError",
    "State",
    "Subscription",
    "Transport",
    "as_schema",
    "denormalize",
    "initial_state",
    "make_schema_selector",
    "normalize",
    "parse_duration",
    "reduce",
    "select_meta",
    "select_results",
]
