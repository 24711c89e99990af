"""
errors.py
---------
HealthCloud Clinical Backend: Error Taxonomy
--------------------------------------------
Exceptions raised across the clinical backend. Every error carries a
human-readable message plus, for errors that originate from a remote
service, the HTTP status code and the response body.

    ClinicalError            base class
    NotFoundError            remote lookup returned no match
    AlreadyExistsError       remote create collided with an existing resource
    InvalidInputError        a required parameter was missing or malformed
    InconsistentStateError   stored data violates an invariant
    RemoteFailureError       opaque transport / service failure

Validation errors are raised before any remote call. Remote errors are never
retried; callers add context with ``exc.wrap("context")``, which keeps the
original class so ``except NotFoundError`` still matches upstream.

Project: HealthCloud Clinical Backend
"""

from __future__ import annotations

from typing import Optional


class ClinicalError(Exception):
    """Base class for every error raised by the clinical backend."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    def wrap(self, context: str) -> "ClinicalError":
        """Return a copy of this error with *context* prefixed to the message."""
        wrapped = type(self)(
            f"{context}: {self.message}",
            status_code=self.status_code,
            body=self.body,
        )
        wrapped.__cause__ = self
        return wrapped


class NotFoundError(ClinicalError):
    """Raised when a remote lookup returns no match."""


class AlreadyExistsError(ClinicalError):
    """Raised when a create call collides with an existing resource."""


class InvalidInputError(ClinicalError, ValueError):
    """Raised when a required field is missing, empty or of the wrong shape."""


class InconsistentStateError(ClinicalError):
    """Raised when stored data violates an invariant (e.g. multi-entry type list)."""


class RemoteFailureError(ClinicalError):
    """Raised when the remote service or the transport fails."""

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} (status {self.status_code})"
        return self.message


class ConfigError(Exception):
    """Raised when required environment configuration is absent."""
