"""
Media player facade over an mpv process controlled through JSON IPC.

This wrapper focuses on:
- Simple playback control (play / pause / resume / stop / seek)
- Volume control and ducking
- Notifying a done_callback when playback finishes
- Thin property and playlist helpers

Every helper is a single command sent through MpvProcess.command(); events
(started, paused, seek, crashed, ...) arrive on the event bus.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config import Config
from .errors import CommandError
from .event_bus import EventBus
from .events import STOPPED
from .lifecycle import MpvProcess

_LOGGER = logging.getLogger(__name__)

LoadMode = str  # "replace" | "append" | "append-play"
SeekMode = str  # "relative" | "absolute" | "absolute-percent" | "relative-percent" | ...


class MpvMediaPlayer(MpvProcess):
    """An mpv player driven over its IPC socket."""

    def __init__(
        self,
        config: Optional[Config] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        super().__init__(config, event_bus)

        self.is_playing: bool = False

        # One callback per "logical playback session"
        self._done_callback: Optional[Callable[[], None]] = None

        self._pre_duck_volume: Optional[float] = None

        # When mpv becomes idle, we treat it as end-of-playback.
        self.event_bus.subscribe(STOPPED, self._on_stopped)

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    async def play(
        self,
        url: Union[str, Sequence[str], bytes],
        done_callback: Optional[Callable[[], None]] = None,
    ) -> None:
        """Plays a URL or sequence of URLs.

        :param url: A single URL (str/bytes) or a sequence of URLs.
        :param done_callback: Called once when playback finishes or is stopped.
        """
        # Replacing a session must not fire the previous session's callback
        self._done_callback = None
        if self.is_playing:
            await self.stop(run_done_callback=False)

        playlist: List[str]
        if isinstance(url, bytes):
            playlist = [url.decode(errors="ignore")]
        elif isinstance(url, str):
            playlist = [url]
        else:
            playlist = list(url)

        if not playlist:
            if done_callback:
                self._call_done_callback(done_callback)
            return

        self._done_callback = done_callback
        try:
            await self.load(playlist[0], "replace")
            for item in playlist[1:]:
                await self.load(item, "append")
            self.is_playing = True
        except Exception:
            _LOGGER.exception("Failed to start playback")
            self.is_playing = False
            cb = self._done_callback
            self._done_callback = None
            if cb:
                self._call_done_callback(cb)
            raise

    async def load(self, source: str, mode: LoadMode = "replace", options: Optional[Dict[str, Any]] = None) -> None:
        """Loads a file or URL (mpv "loadfile")."""
        if options:
            opts = ",".join(f"{key}={value}" for key, value in options.items())
            await self.command("loadfile", source, mode, opts)
        else:
            await self.command("loadfile", source, mode)

    async def append(self, source: str, mode: LoadMode = "append", options: Optional[Dict[str, Any]] = None) -> None:
        await self.load(source, mode, options)

    async def load_playlist(self, playlist: str, mode: LoadMode = "replace") -> None:
        await self.command("loadlist", playlist, mode)

    async def pause(self) -> None:
        """Pauses playback."""
        await self.set_property("pause", True)

    async def resume(self) -> None:
        """Resumes playback."""
        await self.set_property("pause", False)

    async def toggle_pause(self) -> None:
        await self.cycle_property("pause")

    async def stop(self, run_done_callback: bool = True) -> None:
        """Stops playback and clears the playlist.

        :param run_done_callback: If False, clears any prior done_callback without running it.
        """
        cb = self._done_callback if run_done_callback else None
        self._done_callback = None

        was_playing = self.is_playing
        self.is_playing = False

        if self.is_running():
            try:
                await self.command("playlist-clear")
                await self.command("stop")
            except Exception:
                if was_playing:
                    _LOGGER.exception("stop() failed")

        if cb:
            self._call_done_callback(cb)

    async def seek(self, seconds: float, mode: SeekMode = "relative") -> None:
        await self.command("seek", seconds, mode)

    async def go_to_position(self, seconds: float) -> None:
        await self.seek(seconds, "absolute")

    async def loop(self, times: Union[int, str] = "inf") -> None:
        await self.set_property("loop-file", times)

    async def speed(self, scale: float) -> None:
        await self.set_property("speed", scale)

    # -------------------------------------------------------------------------
    # Volume
    # -------------------------------------------------------------------------

    async def set_volume(self, volume: float) -> None:
        """Sets the player volume from 0 to 100."""
        await self.set_property("volume", max(0, min(100, volume)))

    async def adjust_volume(self, value: float) -> None:
        await self.add_property("volume", value)

    async def mute(self, set_mute: Optional[bool] = None) -> None:
        """Mutes, unmutes, or toggles when set_mute is None."""
        if set_mute is None:
            await self.cycle_property("mute")
        else:
            await self.set_property("mute", set_mute)

    async def duck(self, target_percent: int = 20) -> None:
        """Lowers the volume for an announcement."""
        if self._pre_duck_volume is not None:
            return
        self._pre_duck_volume = float(await self.get_property("volume"))
        await self.set_volume(target_percent)

    async def unduck(self) -> None:
        """Restores the volume after an announcement."""
        if self._pre_duck_volume is None:
            return
        try:
            await self.set_volume(self._pre_duck_volume)
        finally:
            self._pre_duck_volume = None

    # -------------------------------------------------------------------------
    # Playlist
    # -------------------------------------------------------------------------

    async def next(self, mode: str = "weak") -> bool:
        """Skips to the next entry. False when there is none."""
        return await self._try_command("playlist-next", mode)

    async def prev(self, mode: str = "weak") -> bool:
        return await self._try_command("playlist-prev", mode)

    async def jump(self, position: int) -> bool:
        return await self._try_command("set_property", "playlist-pos", position)

    async def clear_playlist(self) -> None:
        await self.command("playlist-clear")

    async def playlist_remove(self, index: Union[int, str] = "current") -> None:
        await self.command("playlist-remove", index)

    async def playlist_move(self, index1: int, index2: int) -> None:
        await self.command("playlist-move", index1, index2)

    async def shuffle(self) -> None:
        await self.command("playlist-shuffle")

    async def get_playlist_size(self) -> int:
        return int(await self.get_property("playlist-count"))

    async def get_playlist_position(self) -> int:
        return int(await self.get_property("playlist-pos"))

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    async def get_property(self, name: str) -> Any:
        return await self.command("get_property", name)

    async def set_property(self, name: str, value: Any) -> None:
        await self.command("set_property", name, value)

    async def add_property(self, name: str, value: float) -> None:
        await self.command("add", name, value)

    async def multiply_property(self, name: str, value: float) -> None:
        await self.command("multiply", name, value)

    async def cycle_property(self, name: str) -> None:
        await self.command("cycle", name)

    async def is_paused(self) -> bool:
        return bool(await self.get_property("pause"))

    async def is_muted(self) -> bool:
        return bool(await self.get_property("mute"))

    async def is_seekable(self) -> bool:
        return bool(await self._optional_property("seekable"))

    async def get_time_position(self) -> Optional[float]:
        return await self._optional_property("time-pos")

    async def get_duration(self) -> Optional[float]:
        return await self._optional_property("duration")

    async def get_percent_position(self) -> Optional[float]:
        return await self._optional_property("percent-pos")

    async def get_time_remaining(self) -> Optional[float]:
        return await self._optional_property("time-remaining")

    async def get_metadata(self) -> Optional[Dict[str, Any]]:
        return await self._optional_property("metadata")

    async def get_filename(self, mode: str = "full") -> Optional[str]:
        name = "path" if mode == "full" else "filename"
        return await self._optional_property(name)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    async def _optional_property(self, name: str) -> Any:
        """Property value, or None while mpv has nothing loaded."""
        try:
            return await self.get_property(name)
        except CommandError as err:
            _LOGGER.debug("Property %s unavailable: %s", name, err)
            return None

    async def _try_command(self, verb: str, *args: Any) -> bool:
        try:
            await self.command(verb, *args)
        except CommandError as err:
            _LOGGER.debug("%s rejected: %s", verb, err)
            return False
        return True

    def _on_stopped(self, data: dict) -> None:
        """Idle (no reason attached) marks the end of a playback session."""
        if "reason" in data or not self.is_playing:
            return

        _LOGGER.debug("mpv became idle; treating as end-of-playback")
        self.is_playing = False

        cb = self._done_callback
        self._done_callback = None
        if cb:
            self._call_done_callback(cb)

    def _call_done_callback(self, cb: Callable[[], None]) -> None:
        try:
            cb()
        except Exception:
            _LOGGER.exception("Error running done_callback")
