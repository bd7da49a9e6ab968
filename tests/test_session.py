"""Tests for one IPC session against a fake mpv socket."""

import asyncio
import gc
import logging
import weakref

import pytest

from conftest import EventRecorder, wait_until
from mpv_ipc.errors import CommandError, ConnectionLost, MpvConnectionError
from mpv_ipc.events import ALL_TOPICS
from mpv_ipc.models import ConnectionState
from mpv_ipc.session import IpcSession


@pytest.fixture
async def session(mpv_server, socket_path, event_bus):
    closed = []
    ipc = IpcSession(socket_path, event_bus, seek_max_chunks=3, on_closed=closed.append)
    ipc.closed_calls = closed
    await ipc.connect()
    await wait_until(lambda: mpv_server.clients)
    yield ipc
    ipc.close()


@pytest.fixture
def recorder(event_bus):
    return EventRecorder(event_bus, ALL_TOPICS)


async def test_command_round_trip(session, mpv_server) -> None:
    mpv_server.responses[("get_property", "volume")] = ("success", 50.0)

    assert session.connected
    assert await session.command("get_property", "volume") == 50.0
    assert mpv_server.commands() == [["get_property", "volume"]]


async def test_command_error_is_verbatim(session, mpv_server) -> None:
    mpv_server.responses[("get_property", "duration")] = ("property unavailable", None)

    with pytest.raises(CommandError) as excinfo:
        await session.command("get_property", "duration")

    assert excinfo.value.error == "property unavailable"


async def test_replies_out_of_order(session, mpv_server) -> None:
    mpv_server.auto_reply = False

    first = asyncio.ensure_future(session.command("get_property", "volume"))
    second = asyncio.ensure_future(session.command("get_property", "speed"))
    await wait_until(lambda: len(mpv_server.received) == 2)

    ids = [m["request_id"] for m in mpv_server.received]
    assert ids[0] != ids[1]
    await mpv_server.send({"request_id": ids[1], "error": "success", "data": 1.5})
    await mpv_server.send({"request_id": ids[0], "error": "success", "data": 70})

    assert await first == 70
    assert await second == 1.5


async def test_peer_close_fails_pending_commands(session, mpv_server) -> None:
    mpv_server.auto_reply = False

    pending = asyncio.ensure_future(session.command("loadfile", "a.mkv"))
    await wait_until(lambda: mpv_server.received)
    mpv_server.close()

    with pytest.raises(ConnectionLost):
        await pending
    await wait_until(lambda: session.closed_calls)
    assert session.connection_state == ConnectionState.DISCONNECTED
    assert not session.correlator.pending


async def test_caller_timeout_leaves_request_pending(session, mpv_server) -> None:
    mpv_server.auto_reply = False

    with pytest.raises(asyncio.TimeoutError):
        await session.command("get_property", "volume", timeout=0.05)
    assert len(session.correlator.pending) == 1

    request_id = mpv_server.received[0]["request_id"]
    await mpv_server.send({"request_id": request_id, "error": "success", "data": 1})
    await wait_until(lambda: not session.correlator.pending)
    assert session.connected


async def _abandon_request(session, mpv_server):
    mpv_server.auto_reply = False
    with pytest.raises(asyncio.TimeoutError):
        await session.command("get_property", "duration", timeout=0.05)
    [request] = session.correlator.pending.values()
    return request.request_id, weakref.ref(request.future)


async def _settle_and_collect(future_ref) -> None:
    await wait_until(lambda: future_ref() is None or future_ref().done())
    # Let done callbacks run, then let the future be garbage collected
    await asyncio.sleep(0.01)
    gc.collect()


async def test_late_error_reply_is_dropped_quietly(session, mpv_server, caplog) -> None:
    request_id, future_ref = await _abandon_request(session, mpv_server)

    await mpv_server.send({"request_id": request_id, "error": "property unavailable"})
    await _settle_and_collect(future_ref)

    assert not session.correlator.pending
    assert session.connected
    assert "never retrieved" not in caplog.text
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


async def test_teardown_after_caller_gave_up_is_quiet(session, mpv_server, caplog) -> None:
    _, future_ref = await _abandon_request(session, mpv_server)

    session.close()
    await _settle_and_collect(future_ref)

    assert "never retrieved" not in caplog.text
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


async def test_malformed_line_does_not_break_session(session, mpv_server, recorder) -> None:
    await mpv_server.send(b"{not json}\n")
    await mpv_server.send({"event": "file-loaded"})

    assert await session.command("get_property", "pause") is None
    assert recorder.topics() == ["started"]


async def test_property_change_event(session, mpv_server, recorder) -> None:
    await mpv_server.send({"event": "property-change", "id": 1, "name": "time-pos", "data": 42.5})
    await wait_until(lambda: recorder.events)

    assert session.time_pos == 42.5
    assert recorder.events == [("status", {"property": "time-pos", "value": 42.5})]


async def test_async_error_event(session, mpv_server, recorder) -> None:
    await mpv_server.send({"error": "invalid parameter"})
    await wait_until(lambda: recorder.events)

    assert recorder.topics() == ["error"]
    assert recorder.payloads("error")[0]["error"].error == "invalid parameter"


async def test_observe_property(session, mpv_server) -> None:
    assert await session.observe_property("time-pos") == 1
    assert await session.observe_property("time-pos") == 1
    assert await session.observe_property("volume") == 2

    await session.unobserve_property("time-pos")
    await session.unobserve_property("never-observed")

    assert mpv_server.commands() == [
        ["observe_property", 1, "time-pos"],
        ["observe_property", 2, "volume"],
        ["unobserve_property", 1],
    ]


async def test_seek_reported_once_playback_restarts(session, mpv_server, recorder) -> None:
    await mpv_server.send({"event": "property-change", "name": "time-pos", "data": 10.0})
    await mpv_server.send({"event": "seek"})
    await wait_until(lambda: len(mpv_server.clients) == 2)

    await mpv_server.send({"event": "property-change", "name": "time-pos", "data": 15.0}, client=0)
    await mpv_server.send({"event": "playback-restart"}, client=0)
    await session.command("get_property", "pause")
    assert "resumed" not in recorder.topics()

    await mpv_server.send({"event": "playback-restart"}, client=1)
    await wait_until(lambda: recorder.payloads("seek"))

    assert recorder.payloads("seek") == [{"start": 10.0, "end": 15.0}]
    assert not session.state.seeking


async def test_playback_restart_after_abandoned_seek(session, mpv_server, recorder) -> None:
    await mpv_server.send({"event": "seek"})
    await wait_until(lambda: len(mpv_server.clients) == 2)
    observation = session.seek_detector.active

    for count in range(1, 5):
        await mpv_server.send({"event": "property-change", "name": "volume", "data": count}, client=1)
        await wait_until(lambda: observation.chunks >= count)
    await wait_until(lambda: not session.state.seeking)

    await mpv_server.send({"event": "playback-restart"}, client=0)
    await wait_until(lambda: "resumed" in recorder.topics())

    assert recorder.payloads("seek") == []


async def test_connect_failure(socket_path, event_bus) -> None:
    ipc = IpcSession(socket_path, event_bus)

    with pytest.raises(MpvConnectionError):
        await ipc.connect()
    assert not ipc.connected


async def test_transport_cannot_be_reused(session) -> None:
    with pytest.raises(MpvConnectionError):
        await session.connect()


async def test_close_fails_pending_and_detaches(session, mpv_server) -> None:
    mpv_server.auto_reply = False
    pending = asyncio.ensure_future(session.command("stop"))
    await wait_until(lambda: mpv_server.received)

    session.close()

    with pytest.raises(ConnectionLost):
        await pending
    assert session.closed_calls == []
    with pytest.raises(MpvConnectionError):
        await session.command("stop")
