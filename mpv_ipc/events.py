"""
Translation of raw mpv events into the client's semantic events.

Raw event            Published topic
-------------------  ------------------------------------------------
idle                 stopped
end-file (eof)       playback_finished {reason: "eof"}
end-file (other)     stopped {reason, error?}
file-loaded          started
pause / unpause      paused / resumed
playback-restart     resumed, unless a seek observation owns it
seek                 starts a seek observation; seek {start, end} later
property-change      status {property, value} (time-pos also cached)
(no id, no event)    error {error: AsynchronousPlayerError}
process exit 0       quit
process exit != 0    crashed
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .errors import AsynchronousPlayerError
from .event_bus import EventBus
from .models import SeekResult, SessionState
from .protocol import TIME_POS, AsyncError, Event, EventKind
from .seek import SeekDetector

_LOGGER = logging.getLogger(__name__)

# Published topics
STARTED = "started"
STOPPED = "stopped"
PLAYBACK_FINISHED = "playback_finished"
PAUSED = "paused"
RESUMED = "resumed"
SEEK = "seek"
STATUS = "status"
TIMEPOSITION = "timeposition"
CRASHED = "crashed"
QUIT = "quit"
ERROR = "error"

ALL_TOPICS = (
    STARTED,
    STOPPED,
    PLAYBACK_FINISHED,
    PAUSED,
    RESUMED,
    SEEK,
    STATUS,
    TIMEPOSITION,
    CRASHED,
    QUIT,
    ERROR,
)

# Properties too chatty to log at debug level on every change
_QUIET_PROPERTIES = {TIME_POS, "idle-active", "eof-reached"}


class EventTranslator:
    """Consumes decoded mpv events and publishes semantic events on the bus."""

    def __init__(
        self,
        event_bus: EventBus,
        state: SessionState,
        seek_detector: Optional[SeekDetector] = None,
    ) -> None:
        self.event_bus = event_bus
        self.state = state
        self.seek_detector = seek_detector

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def handle_event(self, event: Event) -> None:
        try:
            kind = EventKind(event.kind)
        except ValueError:
            _LOGGER.debug("Unhandled mpv event %r: %s", event.kind, event.fields)
            return

        if kind == EventKind.IDLE:
            self._publish(STOPPED)

        elif kind == EventKind.END_FILE:
            reason = event.get("reason")
            if reason == "eof":
                self._publish(PLAYBACK_FINISHED, {"reason": "eof"})
            else:
                data: Dict[str, Any] = {"reason": reason}
                error = event.get("file_error") or event.get("error")
                if error:
                    data["error"] = error
                self._publish(STOPPED, data)

        elif kind == EventKind.FILE_LOADED:
            self._publish(STARTED)

        elif kind == EventKind.PAUSE:
            self.state.paused = True
            self._publish(PAUSED)

        elif kind == EventKind.UNPAUSE:
            self.state.paused = False
            self._publish(RESUMED)

        elif kind == EventKind.PLAYBACK_RESTART:
            if self.state.seeking:
                _LOGGER.debug("playback-restart belongs to the seek in progress")
            else:
                self._publish(RESUMED)

        elif kind == EventKind.SEEK:
            if self.seek_detector is None:
                _LOGGER.debug("Seek started but no seek detector is attached")
            else:
                self.seek_detector.begin()

        elif kind == EventKind.PROPERTY_CHANGE:
            self._property_change(event.get("name"), event.get("data"))

        else:
            # tracks-changed is only meaningful to the seek detector
            _LOGGER.debug("Ignoring mpv event %r", event.kind)

    def handle_async_error(self, message: AsyncError) -> None:
        _LOGGER.debug("Asynchronous mpv error: %s", message.error)
        self._publish(ERROR, {"error": AsynchronousPlayerError(message.error, raw=message.raw)})

    # -------------------------------------------------------------------------
    # Process-level signals and detector results
    # -------------------------------------------------------------------------

    def seek_finished(self, result: SeekResult) -> None:
        self._publish(SEEK, {"start": result.start, "end": result.end})

    def process_exited(self, exit_code: Optional[int], clean: Optional[bool] = None) -> None:
        """exit_code None means mpv was killed by a signal."""
        if clean is None:
            clean = exit_code == 0
        if clean:
            self._publish(QUIT, {"exit_code": exit_code})
        else:
            self._publish(CRASHED, {"exit_code": exit_code, "restarted": False})

    def process_recovered(self, exit_code: Optional[int]) -> None:
        # Same topic as the crash itself; restarted tells the two apart
        self._publish(CRASHED, {"exit_code": exit_code, "restarted": True})

    def time_position(self) -> None:
        if self.state.paused or self.state.time_pos is None:
            return
        self._publish(TIMEPOSITION, {"value": self.state.time_pos})

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _property_change(self, name: Any, value: Any) -> None:
        if name == TIME_POS:
            self.state.time_pos = value
        elif name == "pause" and isinstance(value, bool):
            self.state.paused = value

        if name not in _QUIET_PROPERTIES:
            _LOGGER.debug("Property change: %s = %r", name, value)

        self._publish(STATUS, {"property": name, "value": value})

    def _publish(self, topic: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.event_bus.publish(topic, data)
