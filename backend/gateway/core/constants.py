"""Shared constants and enums used across the application."""

from enum import StrEnum


class RequestOrigin(StrEnum):
    """Who initiated an analysis request."""

    DIRECT = "direct"
    EXTERNAL = "external"


class SessionState(StrEnum):
    """Lifecycle of a processing session."""

    CREATED = "CREATED"
    REQUEST_CAPTURED = "REQUEST_CAPTURED"
    FILES_ATTACHED = "FILES_ATTACHED"
    RESPONSE_CAPTURED = "RESPONSE_CAPTURED"
    ERROR_CAPTURED = "ERROR_CAPTURED"
    PERSISTED = "PERSISTED"
    FINALIZED = "FINALIZED"


class ErrorKind(StrEnum):
    """Error taxonomy of the request pipeline."""

    INPUT_VALIDATION = "INPUT_VALIDATION"
    CONFIGURATION = "CONFIGURATION"
    AUTHORIZATION = "AUTHORIZATION"
    BACKEND = "BACKEND"
    PERSISTENCE = "PERSISTENCE"
    CLEANUP = "CLEANUP"
    INTERNAL = "INTERNAL"


class LogLevel(StrEnum):
    """Levels used in session log lines."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class APIRequestMethod(StrEnum):
    """HTTP methods accepted for backend endpoints."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"


# Error-status text written to the summary row when nothing went wrong.
NO_ERROR = "No"

# Column marker for values that cannot be serialised to JSON.
UNSERIALIZABLE = "[unserializable]"
