"""Server-Sent Events (SSE) encoding.

Client side: SSEDecoder turns a stream of text lines into SSEEvent
records, and read_one_message pulls the single `message` event a
streamable-HTTP reply body carries.

Server side: format_sse_event encodes one record for a reply body.

Wire format:
    event: message
    id: 1
    data: {"jsonrpc": "2.0", ...}
    <blank line>
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass

import httpx

from ..errors import DecodeError

logger = logging.getLogger(__name__)

# Event type of a JSON-RPC reply record
MESSAGE_EVENT_TYPE = "message"


@dataclass
class SSEEvent:
    """One decoded SSE record."""

    event: str = ""
    id: str = ""
    data: str = ""


class SSEDecoder:
    """Incremental SSE decoder over an async iterator of lines.

    Handles:
    - `event`, `id` and `data` fields (other fields and comments are skipped)
    - multi-line payloads (each `data:` line joined with a newline)
    - a final record that is not followed by a blank line

    A record without an `event:` field keeps an empty event type.
    """

    def __init__(self, lines: AsyncIterable[str]):
        self._lines: AsyncIterator[str] = aiter(lines)
        self._exhausted = False

    async def parse_next(self) -> SSEEvent | None:
        """Decode the next event.

        Returns:
            The next event, or None at end of stream

        Raises:
            DecodeError: If reading from the underlying stream fails
        """
        event_type = ""
        event_id = ""
        data_lines: list[str] = []

        while not self._exhausted:
            try:
                line = await anext(self._lines)
            except StopAsyncIteration:
                self._exhausted = True
                break
            except (OSError, UnicodeDecodeError, httpx.HTTPError, httpx.StreamError) as e:
                raise DecodeError(f"SSE stream error: {e}") from e

            line = line.rstrip("\r\n")

            if not line:
                if data_lines:
                    return self._build(event_type, event_id, data_lines)
                continue

            field_name, sep, value = line.partition(":")
            if not sep:
                continue
            if value.startswith(" "):
                value = value[1:]

            field_name = field_name.strip()
            if field_name == "event":
                event_type = value
            elif field_name == "id":
                event_id = value
            elif field_name == "data":
                data_lines.append(value)

        if data_lines:
            return self._build(event_type, event_id, data_lines)
        return None

    def __aiter__(self) -> AsyncIterator[SSEEvent]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[SSEEvent]:
        while True:
            event = await self.parse_next()
            if event is None:
                return
            yield event

    @staticmethod
    def _build(event_type: str, event_id: str, data_lines: list[str]) -> SSEEvent:
        return SSEEvent(
            event=event_type,
            id=event_id,
            data="\n".join(data_lines),
        )


async def read_one_message(lines: AsyncIterable[str]) -> str:
    """Read the single `message` event of a reply body and return its data.

    Raises:
        DecodeError: If the stream is empty, unreadable, or the first event
            is not a `message` event
    """
    event = await SSEDecoder(lines).parse_next()
    if event is None:
        raise DecodeError("failed to parse SSE event: stream ended without an event")

    if event.event != MESSAGE_EVENT_TYPE:
        raise DecodeError(f"unexpected SSE event type: {event.event}")

    logger.debug(f"Decoded SSE message (id={event.id or '-'}, {len(event.data)} bytes)")
    return event.data


def format_sse_event(data: str, event: str = MESSAGE_EVENT_TYPE, id: str | None = None) -> str:
    """Encode one SSE record, terminated by a blank line."""
    lines = [f"event: {event}"]
    if id is not None:
        lines.append(f"id: {id}")
    lines.extend(f"data: {chunk}" for chunk in data.split("\n"))
    return "\n".join(lines) + "\n\n"
