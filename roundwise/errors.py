"""Error taxonomy shared by the provider clients and the execution engine."""

from __future__ import annotations

from enum import Enum
from typing import Optional

import httpx


class ErrorCode(str, Enum):
    """Closed set of failure classes a role call can end in."""

    API_KEY_MISSING = "API_KEY_MISSING"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    NETWORK = "NETWORK"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNKNOWN = "UNKNOWN"


class RoundwiseError(Exception):
    """Base class for errors raised outside the engine's outcome model."""


class ConfigError(RoundwiseError):
    """Configuration file could not be read or validated."""


class WorkflowNotFound(RoundwiseError):
    """A named workflow or pipeline preset is not configured."""


_FRIENDLY_MESSAGES = {
    ErrorCode.API_KEY_MISSING: "API key is missing; configure it for this provider.",
    ErrorCode.PERMISSION_DENIED: "API key is invalid or lacks permission.",
    ErrorCode.QUOTA_EXCEEDED: "API quota exceeded; try again later.",
    ErrorCode.TIMEOUT: "Request timed out; check the network or try again later.",
    ErrorCode.NETWORK: "Network error; the service could not be reached.",
    ErrorCode.INVALID_REQUEST: "Invalid request parameters or malformed response.",
    ErrorCode.UNKNOWN: "Unknown error.",
}


def friendly_message(code: ErrorCode) -> str:
    """Return short operator-facing text for ``code``."""
    return _FRIENDLY_MESSAGES.get(code, _FRIENDLY_MESSAGES[ErrorCode.UNKNOWN])


def classify_status(status_code: int) -> Optional[ErrorCode]:
    """Map an HTTP status code onto the taxonomy, or ``None`` if it says nothing."""
    if status_code in (401, 403):
        return ErrorCode.PERMISSION_DENIED
    if status_code == 429:
        return ErrorCode.QUOTA_EXCEEDED
    if status_code in (408, 504):
        return ErrorCode.TIMEOUT
    if status_code in (400, 404, 422):
        return ErrorCode.INVALID_REQUEST
    return None


def classify_message(message: Optional[str]) -> ErrorCode:
    """Best-effort classification from human readable error text.

    Only used when neither a status code nor an exception type is available.
    """
    if not message:
        return ErrorCode.UNKNOWN
    text = message.lower()
    if "not configured" in text or "not provided" in text or "missing" in text:
        return ErrorCode.API_KEY_MISSING
    if "invalid request" in text or "invalid response" in text:
        return ErrorCode.INVALID_REQUEST
    if "invalid" in text or "permission" in text:
        return ErrorCode.PERMISSION_DENIED
    if "quota" in text:
        return ErrorCode.QUOTA_EXCEEDED
    if "timeout" in text or "timed out" in text:
        return ErrorCode.TIMEOUT
    if "network" in text or "fetch" in text or "connect" in text:
        return ErrorCode.NETWORK
    return ErrorCode.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorCode:
    """Classify a transport-level exception raised while calling a backend."""
    if isinstance(exc, httpx.TimeoutException):
        return ErrorCode.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code) or classify_message(str(exc))
    if isinstance(exc, httpx.TransportError):
        return ErrorCode.NETWORK
    if isinstance(exc, ValueError):
        return ErrorCode.INVALID_REQUEST
    return classify_message(str(exc))
