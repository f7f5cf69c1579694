"""Error taxonomy shared by every stage of the matching pipeline.

Each component wraps lower-level failures (driver errors, SDK errors,
malformed payloads) into one of these kinds at the boundary where they occur,
so nothing raw leaks up to the orchestrator.
"""
from __future__ import annotations


class LeadMatchingError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class ValidationError(LeadMatchingError):
    """Bad caller input or a record that does not exist."""


class NotFoundError(ValidationError):
    """Lookup by primary key returned no rows."""


class StorageError(LeadMatchingError):
    """Database I/O failure."""


class ExternalServiceError(LeadMatchingError):
    """Embedding or generative model failure, including malformed responses."""


class ConfigurationError(LeadMatchingError):
    """Required configuration is missing or invalid."""
