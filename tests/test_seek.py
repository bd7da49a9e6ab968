"""Tests for seek completion detection."""

import asyncio
import logging

from conftest import wait_until
from mpv_ipc.models import SeekResult, SessionState
from mpv_ipc.seek import SeekDetector


def _make_detector(socket_path, max_chunks=20):
    state = SessionState()
    results = []
    detector = SeekDetector(socket_path, state, results.append, max_chunks=max_chunks)
    return detector, state, results


async def test_seek_completes_on_playback_restart(mpv_server, socket_path) -> None:
    detector, state, results = _make_detector(socket_path)
    state.time_pos = 10.0

    observation = detector.begin()
    assert state.seeking
    await wait_until(lambda: len(mpv_server.clients) == 1)

    state.time_pos = 15.0
    await mpv_server.send({"event": "property-change", "name": "time-pos", "data": 15.0})
    await mpv_server.send({"event": "playback-restart"})
    await wait_until(lambda: results)

    assert results == [SeekResult(start=10.0, end=15.0)]
    assert not state.seeking
    assert observation.channel_closed
    assert detector.active is None


async def test_seek_gives_up_after_chunk_ceiling(mpv_server, socket_path) -> None:
    detector, state, results = _make_detector(socket_path, max_chunks=3)
    state.time_pos = 5.0

    observation = detector.begin()
    await wait_until(lambda: len(mpv_server.clients) == 1)

    for count in range(1, 5):
        await mpv_server.send({"event": "property-change", "name": "volume", "data": count})
        await wait_until(lambda: observation.chunks >= count)

    await wait_until(lambda: observation.task.done())

    assert results == []
    assert not state.seeking
    assert observation.channel_closed


async def test_tracks_changed_aborts_seek(mpv_server, socket_path) -> None:
    detector, state, results = _make_detector(socket_path)

    observation = detector.begin()
    await wait_until(lambda: len(mpv_server.clients) == 1)
    await mpv_server.send({"event": "tracks-changed"})
    await wait_until(lambda: observation.task.done())

    assert results == []
    assert not state.seeking


async def test_closed_channel_aborts_seek(mpv_server, socket_path) -> None:
    detector, state, results = _make_detector(socket_path)

    observation = detector.begin()
    await wait_until(lambda: len(mpv_server.clients) == 1)
    mpv_server.close()
    await wait_until(lambda: observation.task.done())

    assert results == []
    assert not state.seeking
    assert observation.channel_closed


async def test_new_seek_supersedes_previous(mpv_server, socket_path) -> None:
    detector, state, results = _make_detector(socket_path)
    state.time_pos = 1.0

    first = detector.begin()
    await wait_until(lambda: len(mpv_server.clients) == 1)
    state.time_pos = 20.0
    second = detector.begin()
    await wait_until(lambda: first.task.done())
    assert first.task.cancelled()
    await wait_until(lambda: len(mpv_server.clients) == 2)

    state.time_pos = 25.0
    await mpv_server.send({"event": "playback-restart"}, client=1)
    await wait_until(lambda: second.task.done())

    assert results == [SeekResult(start=20.0, end=25.0)]
    assert not state.seeking


async def test_seek_without_socket(socket_path) -> None:
    detector, state, results = _make_detector(socket_path)

    observation = detector.begin()
    await wait_until(lambda: observation.task.done())

    assert results == []
    assert not state.seeking
    assert observation.channel_closed


async def test_close_abandons_observation(mpv_server, socket_path) -> None:
    detector, state, results = _make_detector(socket_path)

    observation = detector.begin()
    await wait_until(lambda: len(mpv_server.clients) == 1)
    detector.close()
    await wait_until(lambda: observation.task.done())

    assert not state.seeking
    assert detector.active is None
    assert results == []


async def test_channel_close_error_is_logged(mpv_server, socket_path, monkeypatch, caplog) -> None:
    async def _broken_wait_closed(self):
        raise ConnectionResetError("reset during close")

    monkeypatch.setattr(asyncio.StreamWriter, "wait_closed", _broken_wait_closed)
    caplog.set_level(logging.DEBUG, logger="mpv_ipc.seek")
    detector, state, results = _make_detector(socket_path)
    state.time_pos = 4.0

    observation = detector.begin()
    await wait_until(lambda: len(mpv_server.clients) == 1)
    await mpv_server.send({"event": "playback-restart"})
    await wait_until(lambda: observation.task.done())

    assert results == [SeekResult(start=4.0, end=4.0)]
    assert observation.channel_closed
    assert "Error closing seek observation channel" in caplog.text
