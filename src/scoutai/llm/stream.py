"""Incremental Server-Sent Events decoding for streamed plan responses."""

from __future__ import annotations

import codecs
import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from scoutai.exploration.models import PlanChunk, PlanComplete, PlanError, PlanEvent

LOGGER = logging.getLogger(__name__)

STREAM_ENDED_MESSAGE = "Plan stream ended before a completion event"

_CHUNK_EVENTS = {"chunk", "response.output_text.delta"}
_COMPLETE_EVENTS = {"complete", "response.completed", "done"}
_ERROR_EVENTS = {"error", "response.failed", "response.incomplete"}


@dataclass(slots=True, frozen=True)
class SSEMessage:
    """One dispatched event: optional ``event`` name plus joined ``data`` lines."""

    event: str | None
    data: str


class LineBuffer:
    """Splits arbitrary text chunks into complete lines.

    A trailing partial line is held back until the next ``feed`` or
    ``flush``. Lines may end in ``\\n``, ``\\r\\n`` or a lone ``\\r``.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._after_cr = False

    def feed(self, text: str) -> list[str]:
        if not text:
            return []
        # "\r" closing the previous chunk and "\n" opening this one are one terminator.
        if self._after_cr and text.startswith("\n"):
            text = text[1:]
        self._after_cr = text.endswith("\r")
        lines = (self._pending + text).replace("\r\n", "\n").replace("\r", "\n").split("\n")
        self._pending = lines.pop()
        return lines

    def flush(self) -> list[str]:
        self._after_cr = False
        if not self._pending:
            return []
        line, self._pending = self._pending, ""
        return [line]


class SSEDecoder:
    """Feeds raw bytes, yields complete :class:`SSEMessage` objects.

    UTF-8 sequences split across reads are reassembled by an incremental
    decoder before line splitting.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._lines = LineBuffer()
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[SSEMessage]:
        return self._consume(self._lines.feed(self._decoder.decode(chunk)))

    def flush(self) -> list[SSEMessage]:
        lines = self._lines.feed(self._decoder.decode(b"", final=True))
        lines.extend(self._lines.flush())
        messages = self._consume(lines)
        pending = self._dispatch()
        if pending is not None:
            messages.append(pending)
        return messages

    def _consume(self, lines: Iterable[str]) -> list[SSEMessage]:
        messages: list[SSEMessage] = []
        for line in lines:
            if not line:
                message = self._dispatch()
                if message is not None:
                    messages.append(message)
                continue
            if line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "event":
                self._event = value
            elif name == "data":
                self._data.append(value)
        return messages

    def _dispatch(self) -> SSEMessage | None:
        if not self._data and self._event is None:
            return None
        message = SSEMessage(event=self._event, data="\n".join(self._data))
        self._event = None
        self._data = []
        return message


def to_plan_event(message: SSEMessage) -> PlanEvent | None:
    """Map one SSE message onto a plan event; ``None`` for irrelevant messages."""
    if message.data.strip() == "[DONE]":
        return PlanComplete()

    payload = _parse_data(message.data)
    event = message.event
    if event is None and isinstance(payload, dict):
        event_type = payload.get("type")
        event = event_type if isinstance(event_type, str) else None
    if event is None:
        return None

    if event in _CHUNK_EVENTS:
        text = _first_text(payload, "chunk", "delta", "content")
        if text is None:
            text = payload if isinstance(payload, str) else ""
        return PlanChunk(text) if text else None
    if event in _COMPLETE_EVENTS:
        return PlanComplete()
    if event in _ERROR_EVENTS:
        return PlanError(_error_message(payload, event))
    return None


def iter_plan_events(chunks: Iterable[bytes]) -> Iterator[PlanEvent]:
    """Decode a byte stream into plan events ending in exactly one terminal event."""
    decoder = SSEDecoder()
    for chunk in chunks:
        for message in decoder.feed(chunk):
            event = to_plan_event(message)
            if event is None:
                continue
            yield event
            if not isinstance(event, PlanChunk):
                return
    for message in decoder.flush():
        event = to_plan_event(message)
        if event is None:
            continue
        yield event
        if not isinstance(event, PlanChunk):
            return
    LOGGER.warning("plan_stream_truncated")
    yield PlanError(STREAM_ENDED_MESSAGE)


def _parse_data(data: str) -> object:
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        return data


def _first_text(payload: object, *keys: str) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str):
            return value
    return None


def _error_message(payload: object, event: str) -> str:
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return str(error["message"])
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
        response = payload.get("response")
        if isinstance(response, dict):
            nested = response.get("error")
            if isinstance(nested, dict) and isinstance(nested.get("message"), str):
                return str(nested["message"])
            details = response.get("incomplete_details")
            if isinstance(details, dict) and isinstance(details.get("reason"), str):
                return f"Plan generation incomplete: {details['reason']}"
    return f"Plan generation failed ({event})"
