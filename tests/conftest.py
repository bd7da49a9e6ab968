"""Shared fixtures: a fake mpv IPC socket and a fake mpv process launcher."""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from mpv_ipc.config import Config
from mpv_ipc.event_bus import EventBus


class FakeMpvServer:
    """Listens on a Unix socket and answers commands the way mpv does."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.clients: List[asyncio.StreamWriter] = []
        self.received: List[Dict[str, Any]] = []
        self.disconnects = 0
        # verb or (verb, first arg) -> (error, data)
        self.responses: Dict[Any, Tuple[str, Any]] = {}
        self.auto_reply = True
        self.on_command: Optional[Callable[[Dict[str, Any]], None]] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._closed = False

    async def start(self) -> None:
        self._server = await asyncio.start_unix_server(self._handle, path=self.path)

    def close(self) -> None:
        self._closed = True
        for writer in self.clients:
            writer.close()
        if self._server is not None:
            self._server.close()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self._closed:
            # Accepted just before close(); Server.close() leaves it open
            writer.close()
            return
        self.clients.append(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                message = json.loads(line)
                self.received.append(message)
                if self.on_command is not None:
                    self.on_command(message)
                if self.auto_reply:
                    self._reply_to(writer, message)
        except (ConnectionError, OSError):
            pass
        finally:
            self.disconnects += 1
            writer.close()

    def _reply_to(self, writer: asyncio.StreamWriter, message: Dict[str, Any]) -> None:
        command = message.get("command", [])
        verb = command[0] if command else None
        key = (verb, command[1]) if len(command) > 1 else None
        error, data = self.responses.get(key) or self.responses.get(verb) or ("success", None)
        reply = {"request_id": message.get("request_id", 0), "error": error, "data": data}
        writer.write((json.dumps(reply) + "\n").encode())

    def commands(self, verb: Optional[str] = None) -> List[List[Any]]:
        found = [m["command"] for m in self.received if "command" in m]
        if verb is None:
            return found
        return [c for c in found if c and c[0] == verb]

    async def send(self, message: Any, client: Optional[int] = None) -> None:
        """Writes one message (dict or raw line) to one client or to all."""
        if isinstance(message, (bytes, str)):
            data = message.encode() if isinstance(message, str) else message
        else:
            data = (json.dumps(message) + "\n").encode()

        writers = self.clients if client is None else [self.clients[client]]
        for writer in writers:
            if writer.is_closing():
                continue
            writer.write(data)
            await writer.drain()


class FakeProcess:
    """Stands in for asyncio.subprocess.Process."""

    def __init__(self, server: Optional[FakeMpvServer] = None, pid: int = 4242) -> None:
        self.pid = pid
        self.returncode: Optional[int] = None
        self.stderr = None
        self.server = server
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        if self.server is not None:
            self.server.close()
        self._exited.set()

    def terminate(self) -> None:
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)


class FakeLauncher:
    """Replacement for asyncio.create_subprocess_exec that fakes mpv."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, ...]] = []
        self.processes: List[FakeProcess] = []
        self.servers: List[FakeMpvServer] = []
        # Per spawn (by index), whether mpv opens its socket; default True
        self.open_socket: Dict[int, bool] = {}
        self.responses: Dict[Any, Tuple[str, Any]] = {}
        self.auto_reply = True

    async def __call__(self, *args: str, **kwargs: Any) -> FakeProcess:
        index = len(self.calls)
        self.calls.append(args)

        socket_arg = next(a for a in args if a.startswith("--input-ipc-server=") or a.startswith("--input-unix-socket="))
        path = socket_arg.split("=", 1)[1]

        server = FakeMpvServer(path)
        server.responses.update(self.responses)
        server.auto_reply = self.auto_reply
        process = FakeProcess(server)

        def _on_command(message: Dict[str, Any]) -> None:
            if message.get("command", [None])[0] == "quit":
                asyncio.get_running_loop().call_later(0.01, process.exit, 0)

        server.on_command = _on_command
        if self.open_socket.get(index, True):
            await server.start()

        self.processes.append(process)
        self.servers.append(server)
        return process

    @property
    def process(self) -> FakeProcess:
        return self.processes[-1]

    @property
    def server(self) -> FakeMpvServer:
        return self.servers[-1]


class EventRecorder:
    """Records every published topic and payload (without the __topic key)."""

    def __init__(self, event_bus: EventBus, topics) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []
        for topic in topics:
            event_bus.subscribe(topic, self._recorder(topic))

    def _recorder(self, topic: str):
        def _record(data: Dict[str, Any]) -> None:
            self.events.append((topic, {k: v for k, v in data.items() if k != "__topic"}))
        return _record

    def topics(self) -> List[str]:
        return [topic for topic, _ in self.events]

    def payloads(self, topic: str) -> List[Dict[str, Any]]:
        return [data for t, data in self.events if t == topic]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def socket_dir():
    # Unix socket paths are length limited, so stay short
    path = tempfile.mkdtemp(prefix="mpv")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def socket_path(socket_dir) -> str:
    return str(socket_dir / "ipc.sock")


@pytest.fixture
async def mpv_server(socket_path):
    server = FakeMpvServer(socket_path)
    await server.start()
    yield server
    server.close()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def launcher(monkeypatch) -> FakeLauncher:
    fake = FakeLauncher()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake)
    return fake


@pytest.fixture
def config(socket_path) -> Config:
    cfg = Config()
    cfg.ipc.socket = socket_path
    cfg.ipc.start_timeout = 1.0
    cfg.ipc.connect_retry_interval = 0.01
    cfg.player.binary = shutil.which("sh") or "/bin/sh"
    cfg.player.auto_restart = False
    cfg.player.quit_timeout = 1.0
    return cfg
