"""Translate pipeline service errors into HTTP responses."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from leadflow.services.pipeline.errors import PipelineError

logger = logging.getLogger(__name__)

_STATUS_BY_PREFIX = {
    "400": status.HTTP_400_BAD_REQUEST,
    "401": status.HTTP_401_UNAUTHORIZED,
    "404": status.HTTP_404_NOT_FOUND,
    "409": status.HTTP_409_CONFLICT,
}


def map_error_code(code: str) -> int:
    prefix = (code or "").split("_", 1)[0]
    return _STATUS_BY_PREFIX.get(prefix, status.HTTP_500_INTERNAL_SERVER_ERROR)


def to_http_exception(exc: PipelineError, event: str, **context: Any) -> HTTPException:
    status_code = map_error_code(exc.code)
    log = logger.error if status_code >= 500 else logger.info
    log(event, extra={"code": exc.code, **context})
    return HTTPException(status_code=status_code, detail=str(exc))
