"""
Error taxonomy for the SMS pipeline.

Every error carries the HTTP status the API answers with. The carrier retries
webhooks on 5xx only, so transient/system failures map to 5xx and business
rejections to 4xx.
"""

from typing import Any, Optional


class PipelineError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(PipelineError):
    """Malformed or incomplete caller input."""

    status_code = 400


class NotFoundError(PipelineError):
    """No matching configuration or message."""

    status_code = 404


class NumberNotFoundError(NotFoundError):
    """Explicit outbound number id does not resolve to an active number."""

    status_code = 400


class NoActiveNumbersError(NotFoundError):
    """No active outbound number is configured."""

    status_code = 400


class ProviderError(PipelineError):
    """The carrier rejected the request (400) or could not be reached (500)."""

    status_code = 400


class ConfigurationError(PipelineError):
    """Deployment secrets or settings are missing."""

    status_code = 500


class DatastoreError(PipelineError):
    """Read/write failure against the database."""

    status_code = 500
