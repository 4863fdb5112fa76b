"""Shared error classes for the lead pipeline services."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base exception raised by pipeline services and stores."""

    def __init__(self, message: str, code: str = "PIPELINE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class PipelineValidationError(PipelineError):
    """Raised when input is malformed (id shape, enum membership, missing field)."""

    def __init__(self, message: str, code: str = "400_INVALID_INPUT") -> None:
        super().__init__(message, code=code)


class PipelineNotFoundError(PipelineError):
    """Raised when a referenced lead, company or interaction does not exist."""

    def __init__(self, message: str, code: str = "404_NOT_FOUND") -> None:
        super().__init__(message, code=code)


class ReferentialGuardError(PipelineError):
    """Raised when a deletion is blocked by records that still reference the target."""

    def __init__(self, message: str, code: str = "409_REFERENCED") -> None:
        super().__init__(message, code=code)


class PipelinePersistenceError(PipelineError):
    """Raised when the underlying store fails to read or write."""

    def __init__(self, message: str, code: str = "500_INTERNAL") -> None:
        super().__init__(message, code=code)
