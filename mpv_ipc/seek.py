"""
Seek completion detection.

mpv announces the start of a seek with a "seek" event but has no matching
"seek finished" event. Completion is inferred from the next
"playback-restart", which mpv also sends on unpause. While an observation is
active, SessionState.seeking tells the translator to leave playback-restart
to this detector instead of reporting "resumed".

Each observation watches a dedicated secondary connection to the same IPC
socket and gives up after a fixed number of received chunks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .errors import SeekAnomaly, SeekTimeout
from .models import SeekResult, SessionState
from .protocol import READ_CHUNK_SIZE, Event, EventKind, LineFramer, decode_message

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CHUNKS = 20

SeekListener = Callable[[SeekResult], None]


class SeekObservation:
    """Bookkeeping for one seek, from "seek" to its outcome."""

    def __init__(self, start: Optional[float]) -> None:
        self.start = start
        self.chunks = 0
        self.task: Optional[asyncio.Task] = None
        self.channel_closed = False

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()


class SeekDetector:
    """Turns "seek" + a later "playback-restart" into one seek result."""

    def __init__(
        self,
        socket_path: str,
        state: SessionState,
        on_seek: SeekListener,
        *,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
    ) -> None:
        self._socket_path = socket_path
        self._state = state
        self._on_seek = on_seek
        self._max_chunks = max_chunks
        self._current: Optional[SeekObservation] = None

    @property
    def active(self) -> Optional[SeekObservation]:
        return self._current

    def begin(self) -> SeekObservation:
        """Starts observing a seek, superseding any observation in progress."""
        previous = self._current

        observation = SeekObservation(start=self._state.time_pos)
        self._current = observation
        self._state.seeking = True

        if previous is not None:
            _LOGGER.debug("New seek started before the previous one finished; dropping the old observation")
            previous.cancel()

        observation.task = asyncio.get_running_loop().create_task(self._run(observation))
        return observation

    def close(self) -> None:
        """Abandons the active observation (session teardown)."""
        observation = self._current
        self._current = None
        self._state.seeking = False
        if observation is not None:
            observation.cancel()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _run(self, observation: SeekObservation) -> None:
        try:
            result = await self._observe(observation)
        except asyncio.CancelledError:
            _LOGGER.debug("Seek observation cancelled (start=%s)", observation.start)
            raise
        except SeekAnomaly as err:
            _LOGGER.debug("Seek observation failed: %s", err)
            self._finish(observation, None)
        except Exception:
            _LOGGER.exception("Unexpected error while observing seek")
            self._finish(observation, None)
        else:
            self._finish(observation, result)

    async def _observe(self, observation: SeekObservation) -> SeekResult:
        try:
            reader, writer = await asyncio.open_unix_connection(self._socket_path)
        except OSError as err:
            observation.channel_closed = True
            raise SeekAnomaly(f"cannot open seek observation channel: {err}") from err

        try:
            framer = LineFramer()
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    raise SeekAnomaly("observation channel closed by mpv")
                observation.chunks += 1

                for raw in framer.feed(chunk):
                    message = decode_message(raw)
                    if not isinstance(message, Event):
                        continue
                    if message.kind == EventKind.PLAYBACK_RESTART:
                        return SeekResult(start=observation.start, end=self._state.time_pos)
                    if message.kind == EventKind.TRACKS_CHANGED:
                        raise SeekAnomaly("tracks changed during seek")

                if observation.chunks > self._max_chunks:
                    raise SeekTimeout(
                        f"no playback-restart within {self._max_chunks} chunk(s)"
                    )
        finally:
            writer.close()
            observation.channel_closed = True
            try:
                await writer.wait_closed()
            except Exception:
                _LOGGER.debug("Error closing seek observation channel", exc_info=True)

    def _finish(self, observation: SeekObservation, result: Optional[SeekResult]) -> None:
        if observation is not self._current:
            # Superseded by a newer seek; stale observations never report
            return

        self._current = None
        self._state.seeking = False

        if result is not None:
            _LOGGER.debug("Seek finished: %s -> %s", result.start, result.end)
            self._on_seek(result)
