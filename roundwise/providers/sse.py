"""Incremental decoder for line-oriented server-sent event streams."""

from __future__ import annotations

import re
from typing import Iterator, List

DONE_SENTINEL = "[DONE]"

_BOUNDARY = re.compile(r"\r\n\r\n|\n\n")
_LINE_SPLIT = re.compile(r"\r?\n")


def _event_payload(raw_event: str) -> str:
    data_lines: List[str] = []
    for line in _LINE_SPLIT.split(raw_event):
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    return "\n".join(data_lines)


class SSEDecoder:
    """Split arbitrary text chunks into event ``data`` payloads.

    Events end at a blank line; the ``data:`` lines of one event are joined
    with newlines. Events without data lines yield nothing.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> Iterator[str]:
        self._buffer += chunk
        while True:
            match = _BOUNDARY.search(self._buffer)
            if match is None:
                return
            raw_event = self._buffer[: match.start()]
            self._buffer = self._buffer[match.end() :]
            payload = _event_payload(raw_event)
            if payload:
                yield payload

    def flush(self) -> Iterator[str]:
        """Yield a trailing event that never received its blank line."""
        remaining = self._buffer.strip()
        self._buffer = ""
        if remaining:
            payload = _event_payload(remaining)
            if payload:
                yield payload
