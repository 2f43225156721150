"""Identifier coercion helpers."""

import uuid
from typing import Any, Optional


def to_uuid(value: Any) -> Optional[uuid.UUID]:
    """
    Coerce a route/path/JSON identifier to uuid.UUID.

    Args:
        value: UUID, string or None

    Returns:
        uuid.UUID, or None if value is None

    Raises:
        ValueError: If value is not a valid UUID string
    """
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))
