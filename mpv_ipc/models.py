"""Shared state and bookkeeping types."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ConnectionState(str, Enum):
    """Lifecycle of one IPC transport (single use)."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class PlayerState(str, Enum):
    """Lifecycle of the mpv process."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHING = "crashing"


@dataclass
class PendingRequest:
    """In-flight bookkeeping for one command."""
    request_id: int
    verb: str
    future: "asyncio.Future[Any]"
    created_at: float = field(default_factory=time.monotonic)

    def age(self) -> float:
        return time.monotonic() - self.created_at


@dataclass
class SessionState:
    """Mutable per-session state shared by the translator and seek detector.

    Owned by one IpcSession; a restart creates a fresh instance.
    """
    # Last time-pos reported through property-change events
    time_pos: Optional[float] = None
    # True while a seek observation owns playback-restart events
    seeking: bool = False
    paused: bool = False


@dataclass(frozen=True)
class SeekResult:
    start: Optional[float]
    end: Optional[float]
