"""
mpv process lifecycle.

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED   (quit)
                                   -> CRASHING -> STOPPED   (unexpected exit)
                                               -> STARTING  (auto_restart)

An exit with code 0, or any exit while a quit() is in progress, is clean and
publishes "quit". Every other exit (non-zero code, or death by signal) is a
crash: the session is torn down, "crashed" is published, and with
auto_restart the process is started again. A successful restart publishes
"crashed" a second time (with restarted=True) so observers learn that the
player is back.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, List, Optional

from .config import Config
from .errors import MpvConnectionError, MpvError, StartError
from .event_bus import EventBus
from .events import ERROR
from .models import PlayerState
from .protocol import TIME_POS
from .session import IpcSession
from .util import exit_code, remove_stale_socket, resolve_binary

_LOGGER = logging.getLogger(__name__)

_MAX_RETRY_INTERVAL = 1.0
_RETRY_BACKOFF = 1.5
_TERMINATE_TIMEOUT = 2.0


def build_process_args(config: Config) -> List[str]:
    """Command line for a headless mpv controlled over JSON IPC."""
    args = [
        resolve_binary(config.player.binary),
        f"{config.ipc.ipc_command}={config.ipc.socket}",
        "--idle",
        "--input-terminal=no",
        "--really-quiet",
        "--msg-level=ipc=v",
    ]
    if config.player.audio_only:
        args.append("--no-video")
    if config.player.force_window:
        args.append("--force-window")
    args.extend(config.player.extra_args)
    return args


class MpvProcess:
    """Owns one mpv child process and the IPC session connected to it."""

    def __init__(
        self,
        config: Optional[Config] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.config = config or Config()
        self.event_bus = event_bus or EventBus()

        self.player_state = PlayerState.STOPPED
        self.running: bool = False

        self._process: Optional[asyncio.subprocess.Process] = None
        self._session: Optional[IpcSession] = None

        self._watch_task: Optional[asyncio.Task] = None
        self._position_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None

        # mpv stderr tail buffer (for post-mortem)
        self._stderr_tail: Deque[str] = deque(maxlen=40)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Optional[IpcSession]:
        return self._session

    @property
    def socket_path(self) -> str:
        return self.config.ipc.socket

    def is_running(self) -> bool:
        return self.running

    def subscribe(self, topic: str, listener: Callable[[dict], None]) -> None:
        self.event_bus.subscribe(topic, listener)

    def unsubscribe(self, topic: str, listener: Callable[[dict], None]) -> None:
        self.event_bus.unsubscribe(topic, listener)

    async def start(self) -> None:
        """Spawns mpv and waits until its IPC socket is usable.

        :raises StartError: mpv could not be spawned, exited, or its socket
            never accepted a connection within ipc.start_timeout.
        """
        if self.player_state in (PlayerState.STARTING, PlayerState.RUNNING):
            _LOGGER.debug("start() ignored; mpv is already %s", self.player_state.value)
            return

        self.player_state = PlayerState.STARTING
        try:
            await self._start()
        except BaseException:
            self.player_state = PlayerState.STOPPED
            raise

        self.player_state = PlayerState.RUNNING
        self.running = True
        _LOGGER.info("mpv running (pid=%s, ipc=%s)", self._process.pid if self._process else None, self.socket_path)

    async def quit(self) -> None:
        """Asks mpv to quit and waits for the process to exit."""
        if not self.running or self._process is None:
            _LOGGER.debug("quit() ignored; mpv is not running")
            return

        process = self._process
        session = self._session
        watch_task = self._watch_task
        timeout = self.config.player.quit_timeout

        self.player_state = PlayerState.STOPPING

        if session is not None:
            try:
                await session.command("quit", timeout=timeout)
            except (MpvError, asyncio.TimeoutError) as err:
                # mpv often drops the socket before answering "quit"
                _LOGGER.debug("quit command not acknowledged: %s", err)

        if watch_task is None:
            await self._kill(process)
            return

        try:
            await asyncio.wait_for(asyncio.shield(watch_task), timeout=timeout)
        except asyncio.TimeoutError:
            _LOGGER.warning("mpv did not exit %.1fs after quit; terminating", timeout)
            await self._kill(process)
            await watch_task

    async def command(self, verb: str, *args: Any, timeout: Optional[float] = None) -> Any:
        """Sends a raw mpv command and returns the reply data."""
        return await self._require_session().command(verb, *args, timeout=timeout)

    async def observe_property(self, name: str) -> int:
        return await self._require_session().observe_property(name)

    async def unobserve_property(self, name: str) -> None:
        await self._require_session().unobserve_property(name)

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def _start(self) -> None:
        args = build_process_args(self.config)
        remove_stale_socket(self.socket_path)

        _LOGGER.info("Starting mpv (ipc=%s)", self.socket_path)
        _LOGGER.debug("mpv command line: %s", args)

        self._stderr_tail.clear()
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise StartError(f"failed to spawn mpv: {err}") from err

        self._process = process
        loop = asyncio.get_running_loop()
        if getattr(process, "stderr", None) is not None:
            self._stderr_task = loop.create_task(self._stderr_loop(process))

        deadline = loop.time() + self.config.ipc.start_timeout
        try:
            session = await self._connect(process, deadline)
            self._session = session
            try:
                await session.observe_property(TIME_POS, timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError as err:
                raise StartError(
                    f"mpv did not answer on {self.socket_path} within {self.config.ipc.start_timeout}s"
                ) from err
        except BaseException as err:
            self._teardown()
            await self._kill(process)
            if isinstance(err, MpvError) and not isinstance(err, StartError):
                raise StartError(f"mpv IPC unusable after start: {err}") from err
            raise

        self._position_task = loop.create_task(self._position_loop(session))
        self._watch_task = loop.create_task(self._watch(process))

    async def _connect(self, process: asyncio.subprocess.Process, deadline: float) -> IpcSession:
        loop = asyncio.get_running_loop()
        timeout = self.config.ipc.start_timeout
        interval = self.config.ipc.connect_retry_interval
        attempts = 0
        last_error: Optional[BaseException] = None

        while True:
            if process.returncode is not None:
                raise StartError(
                    f"mpv exited during startup (returncode={process.returncode}, stderr_tail={list(self._stderr_tail)!r})",
                    exit_code=exit_code(process.returncode),
                )

            attempts += 1
            session = IpcSession(
                self.socket_path,
                self.event_bus,
                seek_max_chunks=self.config.ipc.seek_max_chunks,
                on_closed=self._session_closed,
            )
            try:
                await session.connect()
            except MpvConnectionError as err:
                last_error = err
            else:
                _LOGGER.debug("mpv IPC ready after %d attempt(s)", attempts)
                return session

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise StartError(
                    f"mpv IPC socket {self.socket_path} not connectable within {timeout}s"
                ) from last_error

            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * _RETRY_BACKOFF, _MAX_RETRY_INTERVAL)

    # -------------------------------------------------------------------------
    # Exit handling
    # -------------------------------------------------------------------------

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        """Waits for mpv to exit and classifies the exit."""
        returncode = await process.wait()
        if process is not self._process:
            return

        # This task is finishing; teardown must not cancel it
        self._watch_task = None
        await self._handle_exit(exit_code(returncode))

    async def _handle_exit(self, code: Optional[int]) -> None:
        session = self._session
        stopping = self.player_state == PlayerState.STOPPING
        clean = code == 0 or stopping

        if not clean:
            self.player_state = PlayerState.CRASHING
        self._teardown()

        if session is None:
            _LOGGER.warning("mpv exited (exit code %s) without an IPC session", code)
            self.player_state = PlayerState.STOPPED
            return

        if clean:
            _LOGGER.info("mpv quit (exit code %s)", code)
            self.player_state = PlayerState.STOPPED
            session.translator.process_exited(code, clean=True)
            return

        _LOGGER.warning(
            "mpv exited unexpectedly (exit code %s). stderr_tail=%r",
            code,
            list(self._stderr_tail),
        )
        self.player_state = PlayerState.STOPPED
        session.translator.process_exited(code, clean=False)

        if not self.config.player.auto_restart:
            return

        _LOGGER.info("Restarting mpv (auto_restart enabled)")
        try:
            await self.start()
        except Exception as err:
            _LOGGER.error("Restarting mpv after crash failed: %s", err)
            self.event_bus.publish(ERROR, {"error": err})
            return

        _LOGGER.info("Restarted mpv after crash")
        if self._session is not None:
            self._session.translator.process_recovered(code)

    def _session_closed(self, error: Optional[BaseException]) -> None:
        if self.player_state == PlayerState.RUNNING:
            _LOGGER.warning("mpv IPC connection closed while mpv is running (%s)", error)

    def _teardown(self) -> None:
        """Releases the session, timers and readers of the current process."""
        self.running = False

        for task in (self._position_task, self._stderr_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
        self._position_task = None
        self._stderr_task = None
        self._watch_task = None

        session = self._session
        self._session = None
        if session is not None:
            session.close()

        self._process = None

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=_TERMINATE_TIMEOUT)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
        except ProcessLookupError:
            pass

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _position_loop(self, session: IpcSession) -> None:
        interval = self.config.player.time_update
        while True:
            await asyncio.sleep(interval)
            session.translator.time_position()

    async def _stderr_loop(self, process: asyncio.subprocess.Process) -> None:
        if process.stderr is None:
            return
        try:
            while True:
                line = await process.stderr.readline()
                if not line:
                    return
                s = line.decode("utf-8", errors="replace").rstrip()
                self._stderr_tail.append(s)
                _LOGGER.debug("mpv: %s", s)
        except asyncio.CancelledError:
            raise
        except Exception:
            _LOGGER.debug("mpv stderr loop error", exc_info=True)

    def _require_session(self) -> IpcSession:
        session = self._session
        if session is None or not session.connected:
            raise MpvConnectionError("mpv is not running")
        return session
