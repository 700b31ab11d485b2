"""Error taxonomy for the job orchestration core.

Every failure that can cross from the core into the API layer is one of the
exceptions below.  Backend transport errors (``httpx.HTTPError``) are caught
at the component that talks to the backend and re-raised as one of these, so
route handlers only ever see :class:`RelayError` subclasses.

Each class carries the HTTP status the API layer responds with, and an
optional ``details`` payload (usually the backend's own error body) that is
passed through to the client unchanged.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base class for all errors raised by the orchestration core.

    Attributes:
        message: Human-readable description, returned as ``error``.
        details: Optional structured payload, returned as ``details``.
    """

    status_code: int = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Serialise to the ``{error, details?}`` response body."""
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class TemplateUnavailable(RelayError):
    """The job template is missing or is not a usable node graph."""


class TemplateNotBound(RelayError):
    """A job was requested before the template store finished loading."""


class ValidationError(RelayError):
    """The generation request is invalid (e.g. empty prompt)."""

    status_code = 400


class SubmissionError(RelayError):
    """The backend could not be reached or rejected the submitted job."""


class GenerationTimedOut(RelayError):
    """The job did not complete within the polling attempt budget."""


class FetchError(RelayError):
    """The artifact could not be fetched from the backend."""


class InvalidReference(RelayError):
    """The artifact URL does not point at the configured backend."""

    status_code = 400
