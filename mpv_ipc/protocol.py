"""
mpv JSON IPC wire format.

mpv speaks newline-delimited JSON over a Unix domain socket:

- commands:  {"command": ["verb", arg, ...], "request_id": 7}
- replies:   {"request_id": 7, "error": "success", "data": ...}
- events:    {"event": "property-change", "name": "time-pos", "data": 1.5}

Everything received is decoded once here into Reply / Event / AsyncError so
the rest of the package never inspects raw dicts.

Ref: https://mpv.io/manual/master/#json-ipc
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Iterator, Optional, Sequence, Union

from .errors import ParseError

_LOGGER = logging.getLogger(__name__)

SUCCESS = "success"
READ_CHUNK_SIZE = 65536

# mpv property carrying the playback position in seconds
TIME_POS = "time-pos"

ErrorSink = Callable[[ParseError], None]


class EventKind(str, Enum):
    """Raw mpv event names the client reacts to."""
    IDLE = "idle"
    END_FILE = "end-file"
    FILE_LOADED = "file-loaded"
    PAUSE = "pause"
    UNPAUSE = "unpause"
    SEEK = "seek"
    PLAYBACK_RESTART = "playback-restart"
    PROPERTY_CHANGE = "property-change"
    TRACKS_CHANGED = "tracks-changed"


# -----------------------------------------------------------------------------
# Inbound message variants
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Reply:
    """Answer to one command, matched by request_id."""
    request_id: int
    error: str
    data: Any = None

    @property
    def success(self) -> bool:
        return self.error == SUCCESS


@dataclass(frozen=True)
class Event:
    """Unsolicited event; fields hold everything except the "event" key."""
    kind: str
    fields: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)


@dataclass(frozen=True)
class AsyncError:
    """A message that is neither a reply nor an event."""
    error: Any
    raw: Any = None


InboundMessage = Union[Reply, Event, AsyncError]


def decode_message(obj: Any) -> InboundMessage:
    """Classifies one decoded JSON value."""
    if not isinstance(obj, dict):
        return AsyncError(error=f"unexpected message type {type(obj).__name__}", raw=obj)

    kind = obj.get("event")
    if isinstance(kind, str):
        fields = {k: v for k, v in obj.items() if k != "event"}
        return Event(kind=kind, fields=fields)

    request_id = obj.get("request_id")
    # request_id 0 is what mpv uses for commands sent without an id
    if isinstance(request_id, int) and not isinstance(request_id, bool) and request_id != 0:
        return Reply(
            request_id=request_id,
            error=str(obj.get("error", SUCCESS)),
            data=obj.get("data"),
        )

    return AsyncError(error=obj.get("error", "unrecognized message"), raw=obj)


def encode_command(verb: str, args: Sequence[Any], request_id: int) -> bytes:
    """Serializes one command as a framed line."""
    payload = {"command": [verb, *args], "request_id": request_id}
    return (json.dumps(payload) + "\n").encode("utf-8")


# -----------------------------------------------------------------------------
# Framing
# -----------------------------------------------------------------------------

class LineFramer:
    """Splits a chunked byte stream into lines and decodes each as JSON.

    A bad line is logged and handed to on_error; it never stops the stream.
    """

    def __init__(self, on_error: Optional[ErrorSink] = None) -> None:
        self._buffer = b""
        self._on_error = on_error

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: Union[bytes, str]) -> Iterator[Any]:
        """Yields every complete JSON value contained in buffer + chunk."""
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self._buffer += chunk

        while True:
            line, sep, rest = self._buffer.partition(b"\n")
            if not sep:
                return
            self._buffer = rest

            line = line.strip()
            if not line:
                continue

            try:
                yield json.loads(line)
            except (UnicodeDecodeError, json.JSONDecodeError) as err:
                self._report(ParseError(line, str(err)))

    def _report(self, error: ParseError) -> None:
        _LOGGER.warning("Dropping malformed IPC line: %s", error)
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            _LOGGER.exception("Error in parse error sink")


async def iter_messages(
    reader: asyncio.StreamReader,
    framer: Optional[LineFramer] = None,
) -> AsyncIterator[Any]:
    """Decoded JSON values read from a stream until EOF."""
    if framer is None:
        framer = LineFramer()

    while True:
        chunk = await reader.read(READ_CHUNK_SIZE)
        if not chunk:
            if framer.pending_bytes:
                _LOGGER.debug("Discarding %d byte(s) of unterminated data at EOF", framer.pending_bytes)
            return
        for message in framer.feed(chunk):
            yield message
