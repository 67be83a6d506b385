"""Base provider client interface for roundwise model calls."""

from __future__ import annotations

import abc
import asyncio
import time
from typing import Callable, Optional, Sequence

import httpx
from pydantic import BaseModel

from ..contracts import CallOutcome, ChatMessage, ProviderBinding, RoleFailed, RoleParameters
from ..errors import ErrorCode, RoundwiseError, classify_message, classify_status

DeltaCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


class ProviderCallError(RoundwiseError):
    """Failure reported to a stream's error callback."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


class ConnectionCheck(BaseModel):
    ok: bool
    latency_ms: float
    message: Optional[str] = None


def elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def error_message_from(response: httpx.Response) -> str:
    """Extract the backend's error text from a failed response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason_phrase or f"Request failed with status {response.status_code}"


def failure_from_response(response: httpx.Response, started: float) -> RoleFailed:
    message = error_message_from(response)
    code = classify_status(response.status_code) or classify_message(message)
    return RoleFailed(code=code, message=message, duration_ms=elapsed_ms(started))


class StreamHandle:
    """Handle on an in-flight provider call."""

    def __init__(self, task: "asyncio.Task[CallOutcome]") -> None:
        self._task = task
        self._started = time.perf_counter()

    def cancel(self) -> None:
        """Abort the underlying request; ``wait`` then resolves to a failure."""
        if not self._task.done():
            self._task.cancel()

    @property
    def done(self) -> "asyncio.Task[CallOutcome]":
        return self._task

    async def wait(self) -> CallOutcome:
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return RoleFailed(
                code=ErrorCode.UNKNOWN,
                message="Request cancelled",
                duration_ms=elapsed_ms(self._started),
            )
        return self._task.result()


class BaseProviderClient(metaclass=abc.ABCMeta):
    """Abstract client for one backend binding.

    Implementations never raise for transport or HTTP failures; they resolve
    to a ``RoleFailed`` outcome instead.
    """

    supports_streaming: bool = False

    def __init__(
        self,
        binding: ProviderBinding,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.binding = binding
        self._http_transport = http_transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._http_transport, timeout=self.binding.timeout_seconds
        )

    @abc.abstractmethod
    async def complete(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
    ) -> CallOutcome:
        """Perform a single non-streaming call."""
        raise NotImplementedError

    def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
        on_delta: Optional[DeltaCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> StreamHandle:
        """Start an incremental call (unsupported by default)."""
        raise NotImplementedError(f"{type(self).__name__} does not support streaming")

    @abc.abstractmethod
    async def check_connection(self) -> ConnectionCheck:
        """Probe the backend's model listing endpoint."""
        raise NotImplementedError
