"""Utility functions for memory graph operations."""

from pydantic import ValidationError

from .constants import FORBIDDEN_USER_ID_CHARS
from .exceptions import InvalidArgumentError, KGError, SchemaValidationError
from .types import Fact

# pydantic error types that mean "wrong shape" rather than "bad value"
SHAPE_ERROR_TYPES = frozenset({
    "missing",
    "string_type",
    "float_type",
    "float_parsing",
    "int_type",
    "bool_type",
    "dict_type",
    "list_type",
    "model_type",
    "model_attributes_type",
})


def validate_user_id(user_id) -> str:
    """Validate a user id for use as a record name. Raises InvalidArgumentError if unsafe."""
    if not isinstance(user_id, str):
        raise InvalidArgumentError("userId is required and must be a string")
    if not user_id or user_id in (".", ".."):
        raise InvalidArgumentError(f"Invalid userId '{user_id}'")
    if any(ch in user_id for ch in FORBIDDEN_USER_ID_CHARS):
        raise InvalidArgumentError(f"Invalid userId '{user_id}': path separators are not allowed")
    return user_id


def field_path(prefix: str, loc: tuple) -> str:
    """Join a pydantic error location into a dotted field path."""
    parts = [prefix] if prefix else []
    parts.extend(str(p) for p in loc)
    return ".".join(parts)


def translate_validation_error(exc: ValidationError, prefix: str = "") -> KGError:
    """Map a pydantic ValidationError onto InvalidArgumentError or SchemaValidationError."""
    errors = exc.errors()
    shape_errors = [e for e in errors if e["type"] in SHAPE_ERROR_TYPES]
    if shape_errors:
        first = shape_errors[0]
        return InvalidArgumentError(f"{field_path(prefix, first['loc'])}: {first['msg']}")

    first = errors[0]
    return SchemaValidationError(field_path(prefix, first["loc"]), first["msg"])


def contains(query: str, *values: str | None) -> bool:
    """Case-insensitive substring test against any non-empty value."""
    return any(v is not None and query in v.lower() for v in values)


def format_fact_line(fact: Fact) -> str:
    """Render a fact as '- [0.80] content (YYYY-MM-DD)' using the local calendar date."""
    return f"- [{fact.confidence:.2f}] {fact.content} ({fact.recorded_at().date().isoformat()})"
