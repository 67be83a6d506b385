"""Provider client factory and one-shot call helpers."""

from __future__ import annotations

from typing import Optional, Sequence

import httpx

from ..contracts import CallOutcome, ChatMessage, ProviderBinding, ProviderKind, RoleParameters
from .base import BaseProviderClient, ConnectionCheck, ProviderCallError, StreamHandle
from .chat import ChatProviderClient
from .plain import PlainProviderClient
from .sse import SSEDecoder


def get_client(
    binding: ProviderBinding,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseProviderClient:
    """Factory function returning the client for ``binding.kind``."""

    if binding.kind == ProviderKind.CHAT:
        return ChatProviderClient(binding, http_transport=http_transport)
    elif binding.kind == ProviderKind.PLAIN:
        return PlainProviderClient(binding, http_transport=http_transport)
    else:
        raise ValueError(f"Unsupported provider kind: {binding.kind}")


async def call_model(
    binding: ProviderBinding,
    model_id: str,
    messages: Sequence[ChatMessage],
    parameters: Optional[RoleParameters] = None,
) -> CallOutcome:
    """Perform one non-streaming call against ``binding``."""
    return await get_client(binding).complete(model_id, messages, parameters)


async def check_connection(binding: ProviderBinding) -> ConnectionCheck:
    return await get_client(binding).check_connection()


__all__ = [
    "BaseProviderClient",
    "ChatProviderClient",
    "ConnectionCheck",
    "PlainProviderClient",
    "ProviderCallError",
    "SSEDecoder",
    "StreamHandle",
    "call_model",
    "check_connection",
    "get_client",
]
