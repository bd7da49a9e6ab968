"""
Unix socket transport for mpv's JSON IPC.

One IpcTransport is one connection. It is single-use: once the connection
ends (peer close, read error or local close) the `closed` signal fires
exactly once and the handle must be discarded. Reconnecting means creating a
new IpcTransport.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Union

from .errors import MpvConnectionError, ParseError
from .models import ConnectionState
from .protocol import LineFramer, iter_messages

_LOGGER = logging.getLogger(__name__)

MessageListener = Callable[[Any], None]
ClosedListener = Callable[[Optional[BaseException]], None]
ParseErrorListener = Callable[[ParseError], None]


class IpcTransport:
    """A single connection to an mpv IPC endpoint."""

    def __init__(
        self,
        path: str,
        *,
        on_message: Optional[MessageListener] = None,
        on_closed: Optional[ClosedListener] = None,
        on_parse_error: Optional[ParseErrorListener] = None,
    ) -> None:
        self.path = path
        self.state = ConnectionState.DISCONNECTED

        self._on_message = on_message
        self._on_closed = on_closed
        self._on_parse_error = on_parse_error

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None

        self._used = False
        self._terminated = False
        self.closed_event = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def terminated(self) -> bool:
        return self._terminated

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Opens the connection and starts reading.

        :raises MpvConnectionError: endpoint missing/refusing, or handle reused.
        """
        if self._used:
            raise MpvConnectionError(f"transport for {self.path} cannot be reused")
        self._used = True

        self.state = ConnectionState.CONNECTING
        try:
            self._reader, self._writer = await asyncio.open_unix_connection(self.path)
        except (OSError, ValueError) as err:
            # Never reached CONNECTED, so no closed signal is owed
            self.state = ConnectionState.DISCONNECTED
            self._terminated = True
            raise MpvConnectionError(f"cannot connect to mpv IPC at {self.path}: {err}") from err

        self.state = ConnectionState.CONNECTED
        _LOGGER.debug("Connected to mpv IPC at %s", self.path)

        self._read_task = asyncio.get_running_loop().create_task(self._read_loop())

    def send(self, line: Union[bytes, str]) -> None:
        """Writes one framed line. Only valid while connected."""
        if not self.connected or self._writer is None:
            raise MpvConnectionError(f"mpv IPC at {self.path} is not connected")
        if isinstance(line, str):
            line = line.encode("utf-8")
        if not line.endswith(b"\n"):
            line += b"\n"
        self._writer.write(line)

    async def drain(self) -> None:
        writer = self._writer
        if writer is None or not self.connected:
            return
        try:
            await writer.drain()
        except (ConnectionError, OSError) as err:
            _LOGGER.debug("mpv IPC write failed: %s", err)
            self._finish(err)

    def detach(self) -> None:
        """Drops all listeners so nothing more is delivered from this handle."""
        self._on_message = None
        self._on_closed = None
        self._on_parse_error = None

    def close(self) -> None:
        """Closes the connection locally. Fires `closed` if not already fired."""
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
        self._finish(None)

    async def wait_closed(self) -> None:
        await self.closed_event.wait()
        task = self._read_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        reader = self._reader
        if reader is None:
            raise MpvConnectionError(f"mpv IPC at {self.path} is not connected")
        framer = LineFramer(on_error=self._parse_error)
        error: Optional[BaseException] = None
        try:
            async for message in iter_messages(reader, framer):
                listener = self._on_message
                if listener is None:
                    continue
                try:
                    listener(message)
                except Exception:
                    _LOGGER.exception("Error handling mpv IPC message %r", message)
        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError) as err:
            # The "error" signal: diagnostic only, always followed by closed
            _LOGGER.debug("mpv IPC read error on %s: %s", self.path, err)
            error = err
        finally:
            self._finish(error)

    def _parse_error(self, error: ParseError) -> None:
        listener = self._on_parse_error
        if listener is not None:
            listener(error)

    def _finish(self, error: Optional[BaseException]) -> None:
        if self._terminated:
            return
        self._terminated = True
        was_connected = self.state == ConnectionState.CONNECTED
        self.state = ConnectionState.DISCONNECTED

        writer = self._writer
        self._writer = None
        if writer is not None:
            try:
                writer.close()
            except Exception:
                _LOGGER.debug("Error closing mpv IPC writer", exc_info=True)

        if was_connected:
            _LOGGER.debug("mpv IPC connection to %s closed", self.path)

        self.closed_event.set()

        listener = self._on_closed
        self._on_closed = None
        if listener is not None:
            try:
                listener(error)
            except Exception:
                _LOGGER.exception("Error in mpv IPC closed listener")


async def open_transport(
    path: str,
    *,
    on_message: Optional[MessageListener] = None,
    on_closed: Optional[ClosedListener] = None,
    on_parse_error: Optional[ParseErrorListener] = None,
) -> IpcTransport:
    """Creates and connects a transport in one step."""
    transport = IpcTransport(
        path,
        on_message=on_message,
        on_closed=on_closed,
        on_parse_error=on_parse_error,
    )
    await transport.connect()
    return transport
