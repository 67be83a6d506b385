"""Client for plain request/response backends (Gemini ``generateContent`` shape)."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..contracts import CallOutcome, ChatMessage, RoleDone, RoleFailed, RoleParameters
from ..errors import ErrorCode, classify_exception
from .base import (
    BaseProviderClient,
    ConnectionCheck,
    elapsed_ms,
    error_message_from,
    failure_from_response,
)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _candidate_text(data: Any) -> Optional[str]:
    candidates = data.get("candidates") if isinstance(data, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return None
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return None
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
    return text or None


class PlainProviderClient(BaseProviderClient):
    """Single-request client with no partial-output mode."""

    supports_streaming = False

    def _base(self) -> str:
        return (self.binding.base_url or DEFAULT_BASE_URL).rstrip("/")

    def build_request(
        self,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
    ) -> Dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == "system"]
        contents: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                continue
            role = "model" if message.role == "assistant" else "user"
            contents.append({"role": role, "parts": [{"text": message.content}]})

        body: Dict[str, Any] = {"contents": contents}
        if system_parts:
            system_text = "\n\n".join(system_parts)
            if self.binding.capabilities.supports_system_instruction:
                body["systemInstruction"] = {"parts": [{"text": system_text}]}
            elif contents:
                first = contents[0]["parts"][0]
                first["text"] = f"{system_text}\n\n{first['text']}"
            else:
                contents.append({"role": "user", "parts": [{"text": system_text}]})

        if parameters is not None:
            generation: Dict[str, Any] = {}
            if parameters.temperature is not None:
                generation["temperature"] = parameters.temperature
            if parameters.top_p is not None:
                generation["topP"] = parameters.top_p
            if generation:
                body["generationConfig"] = generation
        return body

    async def complete(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        parameters: Optional[RoleParameters] = None,
    ) -> CallOutcome:
        started = time.perf_counter()
        credential = self.binding.credential()
        if not credential:
            return RoleFailed(
                code=ErrorCode.API_KEY_MISSING,
                message=f"API key not configured for provider {self.binding.id}",
            )

        body = self.build_request(messages, parameters)
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._base()}/models/{model_id}:generateContent",
                    params={"key": credential},
                    json=body,
                )
                if response.is_error:
                    return failure_from_response(response, started)
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            return RoleFailed(
                code=classify_exception(e), message=str(e), duration_ms=elapsed_ms(started)
            )

        text = _candidate_text(data)
        if text is None:
            return RoleFailed(
                code=ErrorCode.INVALID_REQUEST,
                message="Invalid response structure",
                duration_ms=elapsed_ms(started),
            )
        return RoleDone(text=text, duration_ms=elapsed_ms(started))

    async def check_connection(self) -> ConnectionCheck:
        credential = self.binding.credential()
        if not credential:
            return ConnectionCheck(ok=False, latency_ms=0.0, message="Missing API key")
        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self._base()}/models", params={"key": credential}
                )
        except httpx.HTTPError as e:
            return ConnectionCheck(ok=False, latency_ms=elapsed_ms(started), message=str(e))
        if response.is_error:
            return ConnectionCheck(
                ok=False, latency_ms=elapsed_ms(started), message=error_message_from(response)
            )
        return ConnectionCheck(ok=True, latency_ms=elapsed_ms(started))
