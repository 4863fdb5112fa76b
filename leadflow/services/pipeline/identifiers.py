"""Identifier checks applied at the service boundary."""

from __future__ import annotations

import re
from uuid import UUID

from leadflow.services.pipeline.errors import PipelineValidationError

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def is_identifier(value: object) -> bool:
    """True for RFC 4122 UUID strings (versions 1-5)."""
    if isinstance(value, UUID):
        return True
    return isinstance(value, str) and bool(_UUID_PATTERN.match(value))


def parse_identifier(value: object, *, field: str = "lead_id") -> UUID:
    if isinstance(value, UUID):
        return value
    if not is_identifier(value):
        raise PipelineValidationError(f"{field} must be a valid UUID.", code="400_INVALID_ID")
    return UUID(str(value))
