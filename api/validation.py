"""
api/validation.py -- Request validator for the auth flows.

validate() applies a pydantic request model to raw input and returns an
explicit outcome instead of raising:

    Valid(payload)    -- payload is the typed, constrained model instance
    Invalid(issues)   -- every violated field, in field-declaration order

Pydantic already validates every field before failing, so one call reports
all violations together. A body that is not a JSON object at all is a
distinct failure reported as one generic issue, never per field.

No I/O happens here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, ValidationError

from api.models import PATTERN_MESSAGES

ModelT = TypeVar("ModelT", bound=BaseModel)

MALFORMED_BODY_MESSAGE = "Request body must be a valid JSON object"


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str


@dataclass(frozen=True)
class Valid(Generic[ModelT]):
    payload: ModelT


@dataclass(frozen=True)
class Invalid:
    issues: tuple[ValidationIssue, ...]


ValidationOutcome = Union[Valid, Invalid]

MALFORMED_BODY = Invalid((ValidationIssue("body", MALFORMED_BODY_MESSAGE),))


def _issue_from_error(schema: type[BaseModel], error: dict[str, Any]) -> ValidationIssue:
    field = ".".join(str(part) for part in error["loc"]) or "body"
    error_messages = getattr(schema, "error_messages", {})
    if error["type"] == "value_error":
        # Raised by our own field validators; the exception text is the message.
        message = str(error["ctx"]["error"])
    elif (field, error["type"]) in error_messages:
        message = error_messages[(field, error["type"])]
    elif error["type"] == "string_pattern_mismatch" and field in PATTERN_MESSAGES:
        message = PATTERN_MESSAGES[field]
    else:
        message = error["msg"]
    return ValidationIssue(field=field, message=message)


def validate(schema: type[ModelT], raw: Any) -> ValidationOutcome:
    """Validate already-decoded input against schema."""
    if not isinstance(raw, dict):
        return MALFORMED_BODY
    try:
        return Valid(schema.model_validate(raw))
    except ValidationError as exc:
        return Invalid(tuple(_issue_from_error(schema, e) for e in exc.errors()))


def validate_body(schema: type[ModelT], body: bytes) -> ValidationOutcome:
    """Decode a raw request body as JSON, then validate it against schema.

    Pathologically nested input makes the decoder recurse past the interpreter
    limit; that is a malformed body like any other.
    """
    try:
        raw = json.loads(body)
    except (ValueError, UnicodeDecodeError, RecursionError):
        return MALFORMED_BODY
    return validate(schema, raw)
