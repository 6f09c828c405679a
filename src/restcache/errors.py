"""Exception hierarchy for restcache.

Structural errors (missing identity, shape mismatch, invalid schema) signal a
misconfigured schema or a corrupted response and are raised to the caller.
``FetchError`` is different: the coordinator records it into the cache meta
table so the same fetch key can be retried once its error window closes.
"""

from typing import Any


class RestCacheError(Exception):
    """Base exception for all restcache errors.

    Attributes:
        code: Machine-readable error code (e.g., "MISSING_IDENTITY")
        message: Human-readable error message
        details: Additional error details (optional)
    """

    code: str = "RESTCACHE_ERROR"
    message: str = "An unexpected cache error occurred"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if message:
            self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable error payload."""
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}


class MissingIdentityError(RestCacheError):
    """An entity schema could not derive an id while normalizing."""

    code = "MISSING_IDENTITY"
    message = (
        "Missing usable resource key when normalizing response. "
        "This is likely due to a malformed response."
    )

    def __init__(self, schema_key: str, message: str | None = None) -> None:
        super().__init__(message=message, details={"schema": schema_key})
        self.schema_key = schema_key


class ShapeMismatchError(RestCacheError):
    """A payload or stored result does not have the shape its schema describes.

    Raised by normalization (``fetch_key`` is ``None``) before anything is
    committed, and by selectors reading a stored result.
    """

    code = "SHAPE_MISMATCH"
    message = "Stored result shape does not match schema"

    def __init__(self, fetch_key: str | None, expected: str, actual: str) -> None:
        subject = "Payload" if fetch_key is None else f"Result for {fetch_key!r}"
        super().__init__(
            message=f"{subject} has shape {actual!r} but schema expects {expected!r}",
            details={"fetch_key": fetch_key, "expected": expected, "actual": actual},
        )
        self.fetch_key = fetch_key
        self.expected = expected
        self.actual = actual


class InvalidSchemaError(RestCacheError):
    """A schema description is malformed."""

    code = "INVALID_SCHEMA"
    message = "Invalid schema"


class FetchError(RestCacheError):
    """The transport failed to produce a response body."""

    code = "FETCH_ERROR"
    message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message=message, details=details)
        self.status_code = status_code


__all__ = [
    "FetchError",
    "InvalidSchemaError",
    "MissingIdentityError",
    "RestCacheError",
    "ShapeMismatchError",
]
