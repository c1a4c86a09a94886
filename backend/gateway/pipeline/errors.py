"""
Domain-specific exception hierarchy for the request pipeline.

Every pipeline exception is a GatewayError tagged with an ErrorKind, so
callers can branch on `exc.kind` or catch a subclass.  Each exception
carries structured context (request ID, version, etc.) for logging and
for the persisted audit snapshot.
"""

from __future__ import annotations

from typing import Any

from gateway.core.constants import ErrorKind


class GatewayError(Exception):
    """Base exception for all pipeline errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        request_id: str | None = None,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.request_id = request_id
        self.status_code = status_code or self.default_status
        self.context = context or {}
        super().__init__(message)

    @property
    def error_status(self) -> str:
        """Short text for the summary row's error column."""
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Serialise for the audit snapshot."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }


class InputValidationError(GatewayError):
    """Missing file, wrong file type or malformed options."""

    kind = ErrorKind.INPUT_VALIDATION
    default_status = 400

    @property
    def error_status(self) -> str:
        return f"Input error: {self.message}"


class ConfigurationError(GatewayError):
    """The resolved backend version is not configured."""

    kind = ErrorKind.CONFIGURATION
    default_status = 400


class AuthorizationError(GatewayError):
    """The submitting user is unknown or no longer authorized."""

    kind = ErrorKind.AUTHORIZATION
    default_status = 403


class BackendError(GatewayError):
    """The analysis backend returned an error status or could not be reached."""

    kind = ErrorKind.BACKEND

    def __init__(
        self,
        message: str,
        *,
        backend_status: int | None = None,
        **kwargs: Any,
    ) -> None:
        self.backend_status = backend_status
        kwargs.setdefault("status_code", backend_status)
        super().__init__(message, **kwargs)

    @property
    def error_status(self) -> str:
        if self.backend_status is not None:
            return f"Backend Error (HTTP {self.backend_status})"
        return f"Backend Error: {self.message}"


class PersistenceError(GatewayError):
    """Writing the audit snapshot failed.  Logged, never surfaced."""

    kind = ErrorKind.PERSISTENCE


class CleanupError(GatewayError):
    """Deleting a temporary file failed.  Logged, never surfaced."""

    kind = ErrorKind.CLEANUP


class SessionStateError(RuntimeError):
    """A session operation was called out of lifecycle order."""
    pass
