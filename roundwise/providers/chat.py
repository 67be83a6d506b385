"""Client for OpenAI-compatible chat-message backends."""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..contracts import CallOutcome, ChatMessage, RoleDone, RoleFailed, RoleParameters
from ..errors import ErrorCode, classify_exception
from .base import (
    BaseProviderClient,
    ConnectionCheck,
    DeltaCallback,
    ErrorCallback,
    ProviderCallError,
    StreamHandle,
    elapsed_ms,
    error_message_from,
    failure_from_response,
)
from .sse import DONE_SENTINEL, SSEDecoder

# Backends reject ``name`` values outside this alphabet.
_WIRE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def _delta_content(data: Any) -> Optional[str]:
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    delta = choices[0].get("delta") if isinstance(choices[0], dict) else None
    content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) and content else None


def _message_content(data: Any) -> Optional[str]:
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) and content else None


class ChatProviderClient(BaseProviderClient):
    """``/chat/completions`` client supporting complete and streamed responses."""

    supports_streaming = True

    def _url(self, path: str) -> str:
        return f"{self.binding.base_url.rstrip('/')}/{path}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        credential = self.binding.credential()
        if credential:
            headers["Authorization"] = f"Bearer {credential}"
        return headers

    def _wire_messages(self, messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
        system_ok = self.binding.capabilities.supports_system_instruction
        wire = []
        for message in messages:
            role = message.role
            if role == "system" and not system_ok:
                role = "user"
            item = {"role": role, "content": message.content}
            if message.name and _WIRE_NAME.match(message.name):
                item["name"] = message.name
            wire.append(item)
        return wire

    def build_request(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": model_id,
            "messages": self._wire_messages(messages),
        }
        if stream:
            body["stream"] = True
        if parameters is not None:
            body.update(parameters.model_dump(exclude_none=True))
        return body

    async def complete(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
    ) -> CallOutcome:
        started = time.perf_counter()
        body = self.build_request(model_id, messages, parameters)
        try:
            async with self._client() as client:
                response = await client.post(
                    self._url("chat/completions"), json=body, headers=self._headers()
                )
                if response.is_error:
                    return failure_from_response(response, started)
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return RoleFailed(
                code=classify_exception(e), message=str(e), duration_ms=elapsed_ms(started)
            )

        content = _message_content(data)
        if content is None:
            return RoleFailed(
                code=ErrorCode.INVALID_REQUEST,
                message="Invalid response structure",
                duration_ms=elapsed_ms(started),
            )
        return RoleDone(text=content, duration_ms=elapsed_ms(started))

    def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
        on_delta: Optional[DeltaCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> StreamHandle:
        task = asyncio.ensure_future(
            self._run_stream(model_id, messages, parameters, on_delta, on_error)
        )
        return StreamHandle(task)

    async def _run_stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters],
        on_delta: Optional[DeltaCallback],
        on_error: Optional[ErrorCallback],
    ) -> CallOutcome:
        started = time.perf_counter()
        body = self.build_request(model_id, messages, parameters, stream=True)
        parts: List[str] = []

        def handle(payload: str) -> bool:
            """Process one event payload; return ``True`` at the terminator."""
            if payload == DONE_SENTINEL:
                return True
            try:
                data = json.loads(payload)
            except ValueError as e:
                if on_error is not None:
                    on_error(e)
                return False
            content = _delta_content(data)
            if content:
                parts.append(content)
                if on_delta is not None:
                    on_delta(content)
            return False

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    self._url("chat/completions"),
                    json=body,
                    headers=self._headers(),
                ) as response:
                    if response.is_error:
                        await response.aread()
                        failure = failure_from_response(response, started)
                        if on_error is not None:
                            on_error(ProviderCallError(failure.code, failure.message))
                        return failure

                    decoder = SSEDecoder()
                    finished = False
                    async for chunk in response.aiter_text():
                        for payload in decoder.feed(chunk):
                            if handle(payload):
                                finished = True
                                break
                        if finished:
                            break
                    if not finished:
                        for payload in decoder.flush():
                            if handle(payload):
                                break
        except (httpx.HTTPError, ValueError) as e:
            if on_error is not None:
                on_error(e)
            return RoleFailed(
                code=classify_exception(e), message=str(e), duration_ms=elapsed_ms(started)
            )

        return RoleDone(text="".join(parts), duration_ms=elapsed_ms(started))

    async def check_connection(self) -> ConnectionCheck:
        started = time.perf_counter()
        if not self.binding.base_url:
            return ConnectionCheck(ok=False, latency_ms=0.0, message="Missing base_url")
        try:
            async with self._client() as client:
                response = await client.get(self._url("models"), headers=self._headers())
        except httpx.HTTPError as e:
            return ConnectionCheck(ok=False, latency_ms=elapsed_ms(started), message=str(e))
        if response.is_error:
            return ConnectionCheck(
                ok=False, latency_ms=elapsed_ms(started), message=error_message_from(response)
            )
        return ConnectionCheck(ok=True, latency_ms=elapsed_ms(started))
