"""Server-Sent-Events framing."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass
class SSEEvent:
    event: str
    data: str
    id: str | None = None

    def json(self) -> Any:
        return json.loads(self.data)


def encode_event(event: str, data: Any) -> bytes:
    """Frame one event; *data* is JSON-encoded unless already a string."""
    text = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"))
    lines = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in text.split("\n"))
    return ("\n".join(lines) + "\n\n").encode("utf-8")


def encode_comment(text: str = "") -> bytes:
    return f": {text}\n\n".encode("utf-8")


class SSEParser:
    """Incremental parser: feed decoded text chunks, get complete events back."""

    def __init__(self) -> None:
        self._buf = ""
        self._event = ""
        self._data: list[str] = []
        self._id: str | None = None

    def feed(self, chunk: str) -> list[SSEEvent]:
        self._buf += chunk
        # A trailing CR may be the first half of a CRLF split across chunks
        held = ""
        if self._buf.endswith("\r"):
            self._buf, held = self._buf[:-1], "\r"
        self._buf = self._buf.replace("\r\n", "\n").replace("\r", "\n")
        events: list[SSEEvent] = []
        while True:
            nl = self._buf.find("\n")
            if nl < 0:
                break
            line = self._buf[:nl]
            self._buf = self._buf[nl + 1:]
            ev = self._line(line)
            if ev is not None:
                events.append(ev)
        self._buf += held
        return events

    def _line(self, line: str) -> SSEEvent | None:
        if line == "":
            if not self._data:
                self._event = ""
                return None
            ev = SSEEvent(self._event or "message", "\n".join(self._data), self._id)
            self._event = ""
            self._data = []
            return ev
        if line.startswith(":"):
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            self._id = value
        return None
