"""Shared validation functions for all entry points.

Pure functions with no FastAPI or Click dependencies.
"""

from __future__ import annotations

import unicodedata
from typing import Any

from trellis.errors import ValidationError

_MAX_ACTOR_LENGTH = 128
_MAX_ID_LENGTH = 128


def sanitize_actor(value: Any) -> tuple[str, str | None]:
    """Validate and clean an actor name.

    Returns (cleaned_actor, None) on success or ("", error_message) on failure.
    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", "actor must be a string")
    # Check control/format chars before stripping so "\nbad" is rejected.
    for ch in value:
        cat = unicodedata.category(ch)
        if cat.startswith("C"):  # Cc (control) and Cf (format)
            return ("", f"actor must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", "actor must not be empty")
    if len(cleaned) > _MAX_ACTOR_LENGTH:
        return ("", f"actor must be at most {_MAX_ACTOR_LENGTH} characters")
    return (cleaned, None)


def require_actor(value: Any) -> str:
    """Like :func:`sanitize_actor` but raises ValidationError on failure."""
    actor, err = sanitize_actor(value)
    if err is not None:
        raise ValidationError(err)
    return actor


def require_id(value: Any, name: str) -> str:
    """Return *value* stripped, or raise ValidationError if it is not a usable id."""
    if not isinstance(value, str) or not value.strip():
        msg = f"{name} is required"
        raise ValidationError(msg)
    cleaned = value.strip()
    if len(cleaned) > _MAX_ID_LENGTH:
        msg = f"{name} must be at most {_MAX_ID_LENGTH} characters"
        raise ValidationError(msg)
    return cleaned
