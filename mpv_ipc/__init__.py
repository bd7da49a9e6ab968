"""
mpv IPC client

Runs mpv as a child process and controls it over its JSON IPC socket:
- Concurrent commands multiplexed over one connection by request_id
- Raw mpv events translated into started / stopped / paused / resumed /
  seek / status / crashed / quit events on an EventBus
- Crash detection with optional automatic restart
"""

from .config import Config, load_config_from_json
from .errors import (
    AsynchronousPlayerError,
    CommandError,
    ConnectionLost,
    MpvConnectionError,
    MpvError,
    StartError,
)
from .event_bus import EventBus, EventHandler, subscribe
from .lifecycle import MpvProcess
from .mpv_player import MpvMediaPlayer
from .session import IpcSession

__all__ = [
    "AsynchronousPlayerError",
    "CommandError",
    "Config",
    "ConnectionLost",
    "EventBus",
    "EventHandler",
    "IpcSession",
    "MpvConnectionError",
    "MpvError",
    "MpvMediaPlayer",
    "MpvProcess",
    "StartError",
    "load_config_from_json",
    "subscribe",
]
