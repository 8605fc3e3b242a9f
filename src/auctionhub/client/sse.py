"""Incremental decoder for the ``text/event-stream`` wire format.

``feed`` takes decoded text in arbitrary chunks and returns every
``ServerSentEvent`` completed by a blank line. Only CR, LF and CRLF end a
line: JSON payloads may carry U+2028 and similar characters raw, and those
must stay inside their ``data:`` line. Comment lines such as
``: heartbeat`` are dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True, slots=True)
class ServerSentEvent:
    data: str
    event: str = "message"


class SSEDecoder:
    def __init__(self) -> None:
        self._buffer = ""
        self._data: list[str] = []
        self._event = ""

    def feed(self, chunk: str) -> list[ServerSentEvent]:
        self._buffer += chunk
        events: list[ServerSentEvent] = []
        while match := _LINE_BREAK.search(self._buffer):
            # a trailing CR may be the first half of a CRLF split across chunks
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            line = self._buffer[: match.start()]
            self._buffer = self._buffer[match.end() :]
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def feed_line(self, line: str) -> ServerSentEvent | None:
        """Process one line with its terminator already removed."""
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        # "id", "retry" and unknown fields are ignored: there is no replay
        # and backoff is client-driven

        return None

    def _dispatch(self) -> ServerSentEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = ServerSentEvent(data="\n".join(self._data), event=self._event or "message")
        self._data = []
        self._event = ""
        return event
