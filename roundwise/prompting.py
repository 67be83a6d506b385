"""Deterministic assembly of the message list for one role call."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .contracts import ChatMessage, HistoryTurn, Role, RunOutputs

ORIGINAL_REQUEST_LABEL = "Original request"


def take_history(
    n: int, history: Sequence[HistoryTurn], before: datetime
) -> List[ChatMessage]:
    """Return the ``n`` most recent user turns strictly before ``before``, oldest first."""
    if n <= 0:
        return []
    earlier = [turn for turn in history if turn.at < before]
    return [ChatMessage(role="user", content=turn.content) for turn in earlier[-n:]]


def original_request_segment(user_input: str) -> ChatMessage:
    return ChatMessage(role="user", content=f"{ORIGINAL_REQUEST_LABEL}:\n{user_input}")


def output_segment(role_name: str, text: str) -> ChatMessage:
    return ChatMessage(role="user", name=role_name, content=f"Output from {role_name}:\n{text}")


def build_messages(
    role: Role,
    round_index: int,
    user_input: str,
    history_n: int,
    receive_from: Sequence[str],
    outputs: RunOutputs,
    history: Sequence[HistoryTurn],
    run_started_at: datetime,
) -> List[ChatMessage]:
    """Build the ordered input segments for ``role`` in round ``round_index``.

    Order: system instruction, history window, original request (later
    rounds only), injected outputs of earlier rounds, raw input (first round
    only). The input therefore appears exactly once per message list.
    """
    messages: List[ChatMessage] = []

    if role.system_prompt and role.system_prompt.strip():
        messages.append(ChatMessage(role="system", content=role.system_prompt))

    messages.extend(take_history(history_n, history, run_started_at))

    if round_index > 0:
        messages.append(original_request_segment(user_input))

    for source in receive_from:
        text = outputs.latest_before(source, round_index)
        if text and text.strip():
            messages.append(output_segment(source, text))

    if round_index == 0:
        messages.append(ChatMessage(role="user", content=user_input))

    return messages


_WHITESPACE = re.compile(r"\s+")


def preview_messages(
    messages: Sequence[ChatMessage], width: Optional[int] = 5
) -> List[Dict[str, str]]:
    """Compact view of a message list for debugging.

    Content is whitespace-collapsed and cut to ``width`` characters; pass
    ``None`` to keep it whole.
    """
    preview = []
    for message in messages:
        text = _WHITESPACE.sub(" ", message.content).strip()
        if width is not None and len(text) > width:
            text = text[:width] + "…"
        item = {"role": message.role, "content": text}
        if message.name:
            item["name"] = message.name
        preview.append(item)
    return preview
