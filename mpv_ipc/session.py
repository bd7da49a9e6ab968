"""
One IPC session: a single connection plus everything wired onto it.

    IpcTransport -> MessageRouter -> RequestCorrelator (replies)
                                  -> EventTranslator   (events) -> EventBus
                                        \\-> SeekDetector (secondary connection)

All per-session state (pending requests, cached time position, seeking flag)
lives on the session, so a reconnect starts from a clean slate by creating a
new IpcSession.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from .correlator import RequestCorrelator
from .event_bus import EventBus
from .events import EventTranslator
from .models import ConnectionState, SessionState
from .router import MessageRouter
from .seek import DEFAULT_MAX_CHUNKS, SeekDetector
from .transport import IpcTransport

_LOGGER = logging.getLogger(__name__)


class IpcSession:
    """Multiplexes commands and events over one mpv IPC connection."""

    def __init__(
        self,
        socket_path: str,
        event_bus: EventBus,
        *,
        seek_max_chunks: int = DEFAULT_MAX_CHUNKS,
        on_closed: Optional[Callable[[Optional[BaseException]], None]] = None,
    ) -> None:
        self.socket_path = socket_path
        self.event_bus = event_bus
        self.state = SessionState()

        self._on_closed_callback = on_closed

        self.transport = IpcTransport(
            socket_path,
            on_message=self._on_message,
            on_closed=self._on_closed,
        )
        self.correlator = RequestCorrelator(self.transport.send)
        self.translator = EventTranslator(event_bus, self.state)
        self.seek_detector = SeekDetector(
            socket_path,
            self.state,
            self.translator.seek_finished,
            max_chunks=seek_max_chunks,
        )
        self.translator.seek_detector = self.seek_detector
        self.router = MessageRouter(self.correlator, self.translator)

        # property name -> mpv observer id
        self._observed: Dict[str, int] = {}
        self._next_observer_id = 1

    @property
    def connection_state(self) -> ConnectionState:
        return self.transport.state

    @property
    def connected(self) -> bool:
        return self.transport.connected

    @property
    def time_pos(self) -> Optional[float]:
        return self.state.time_pos

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        await self.transport.connect()

    async def command(self, verb: str, *args: Any, timeout: Optional[float] = None) -> Any:
        """Sends a command and waits for the reply data.

        :raises MpvConnectionError: not connected.
        :raises CommandError: mpv answered with an error.
        :raises ConnectionLost: the connection closed before the reply.
        :raises asyncio.TimeoutError: no reply within timeout. The request
            itself stays pending until a reply or teardown settles it.
        """
        future = self.correlator.issue(verb, *args)
        await self.transport.drain()

        # shield: giving up must not cancel the pending slot
        try:
            if timeout is None:
                return await asyncio.shield(future)
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            stuck = self.correlator.stale(older_than=timeout)
            _LOGGER.debug("No reply to %r within %.2fs (%d request(s) stuck)", verb, timeout, len(stuck))
            future.add_done_callback(_drop_outcome)
            raise
        except asyncio.CancelledError:
            future.add_done_callback(_drop_outcome)
            raise

    async def observe_property(self, name: str, timeout: Optional[float] = None) -> int:
        """Asks mpv to report changes of a property as property-change events."""
        observer_id = self._observed.get(name)
        if observer_id is not None:
            return observer_id

        observer_id = self._next_observer_id
        self._next_observer_id += 1
        await self.command("observe_property", observer_id, name, timeout=timeout)
        self._observed[name] = observer_id
        return observer_id

    async def unobserve_property(self, name: str) -> None:
        observer_id = self._observed.pop(name, None)
        if observer_id is None:
            _LOGGER.debug("Property %r is not observed", name)
            return
        await self.command("unobserve_property", observer_id)

    def close(self, error: Optional[BaseException] = None) -> None:
        """Tears the session down. Every pending command fails."""
        self.seek_detector.close()
        self.transport.detach()
        self.transport.close()
        self.correlator.fail_all(error)
        self._observed.clear()

    # -------------------------------------------------------------------------
    # Transport listeners
    # -------------------------------------------------------------------------

    def _on_message(self, raw: Any) -> None:
        self.router.route(raw)

    def _on_closed(self, error: Optional[BaseException]) -> None:
        if error is not None:
            _LOGGER.debug("mpv IPC session closed with error: %s", error)
        else:
            _LOGGER.debug("mpv IPC session closed")

        self.correlator.fail_all(error)
        self.seek_detector.close()

        callback = self._on_closed_callback
        if callback is not None:
            callback(error)


def _drop_outcome(future: "asyncio.Future[Any]") -> None:
    """Consumes the result of a request whose caller gave up."""
    if future.cancelled():
        return
    err = future.exception()
    if err is not None:
        _LOGGER.debug("Dropped outcome of abandoned request: %s", err)
