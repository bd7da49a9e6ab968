"""Exceptions raised by the mpv IPC client."""

from typing import Any, Optional


class MpvError(Exception):
    """Base class for every error raised by this package."""


class MpvConnectionError(MpvError, ConnectionError):
    """The IPC endpoint is unreachable, or the handle is closed or terminated."""


class ConnectionLost(MpvConnectionError):
    """The transport closed while a request was still waiting for its reply."""

    def __init__(self, message: str = "mpv IPC connection lost", request_id: Optional[int] = None):
        super().__init__(message)
        self.request_id = request_id


class CommandError(MpvError):
    """mpv replied to a command with a non-success error string."""

    def __init__(self, error: str, verb: Optional[str] = None, request_id: Optional[int] = None):
        super().__init__(error)
        # Verbatim player-reported string, e.g. "property unavailable"
        self.error = error
        self.verb = verb
        self.request_id = request_id

    def __str__(self) -> str:
        if self.verb:
            return f"{self.verb}: {self.error}"
        return self.error


class ParseError(MpvError, ValueError):
    """A received line was not valid JSON. Logged, never raised to callers."""

    def __init__(self, line: bytes, reason: str):
        super().__init__(f"invalid JSON line ({reason}): {line[:200]!r}")
        self.line = line
        self.reason = reason


class SeekAnomaly(MpvError):
    """A seek observation ended without a playback restart."""


class SeekTimeout(SeekAnomaly):
    """No playback restart was seen within the chunk ceiling."""


class AsynchronousPlayerError(MpvError):
    """An error reported by mpv that is not tied to any request."""

    def __init__(self, error: Any, raw: Any = None):
        super().__init__(f"mpv error: {error}")
        self.error = error
        self.raw = raw


class StartError(MpvError):
    """The mpv process did not become controllable within the startup bound."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code
