"""Exception taxonomy shared by every pipeline component."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all invoice pipeline errors."""


class ConfigurationError(PipelineError, ValueError):
    """Required configuration is missing or invalid.

    Raised at startup; never retried.
    """


class ParseError(PipelineError):
    """A raw message or event payload could not be parsed."""


class ExtractionError(PipelineError):
    """The inference backend failed, declined, or returned unusable output."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class StoreError(PipelineError):
    """A blob or record backend operation failed."""


class NotFoundError(PipelineError):
    """A lookup found nothing. A normal negative result, not a failure."""
