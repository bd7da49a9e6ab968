"""Configuration models for the mpv IPC client."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import logging
_LOGGER = logging.getLogger(__name__)

DEFAULT_SOCKET = "/tmp/mpv_ipc.sock"

# -----------------------------------------------------------------------------
# Configuration Dataclasses
# -----------------------------------------------------------------------------

@dataclass
class PlayerConfig:
    """Settings for the mpv process."""
    # Path to the mpv binary; looked up on PATH when unset
    binary: Optional[str] = None
    audio_only: bool = False
    force_window: bool = False
    auto_restart: bool = True
    # Seconds between timeposition events
    time_update: float = 1.0
    # Seconds to wait for mpv to exit after "quit" before terminating it
    quit_timeout: float = 3.0
    extra_args: List[str] = field(default_factory=list)


@dataclass
class IpcConfig:
    """Settings for the JSON IPC socket."""
    socket: str = DEFAULT_SOCKET
    # Older mpv builds only understand --input-unix-socket
    ipc_command: str = "--input-ipc-server"
    # Seconds to wait for the socket to accept connections after spawning
    start_timeout: float = 5.0
    connect_retry_interval: float = 0.05
    # Received chunks to wait for playback-restart after a seek
    seek_max_chunks: int = 20


@dataclass
class AppConfig:
    """General application settings."""
    debug: bool = False
    verbose: bool = False


@dataclass
class Config:
    """Main configuration object."""
    app: AppConfig = field(default_factory=AppConfig)
    player: PlayerConfig = field(default_factory=PlayerConfig)
    ipc: IpcConfig = field(default_factory=IpcConfig)

# -----------------------------------------------------------------------------
# Helper Function
# -----------------------------------------------------------------------------

def load_config_from_json(config_path: Path) -> Config:
    """Loads configuration from a JSON file and populates dataclasses."""

    # --- Step 1: Load raw JSON data ---
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_data = json.load(f)
    except FileNotFoundError:
        _LOGGER.critical("Configuration file not found at: %s", config_path)
        raise
    except json.JSONDecodeError as e:
        _LOGGER.critical("Error parsing configuration file: %s", e)
        raise

    if not isinstance(raw_data, dict):
        raise ValueError("Configuration file must contain a JSON object.")

    # --- Step 2: Create config objects from raw data ---
    app_config = AppConfig(**raw_data.get("app", {}))
    player_config = PlayerConfig(**raw_data.get("player", {}))
    ipc_config = IpcConfig(**raw_data.get("ipc", {}))

    # --- Step 3: Sanity checks ---
    if ipc_config.ipc_command not in ("--input-ipc-server", "--input-unix-socket"):
        raise ValueError(f"Unsupported ipc_command: {ipc_config.ipc_command}")
    if player_config.time_update <= 0:
        raise ValueError("player.time_update must be positive")

    # --- Step 4: Return the main Config object ---
    return Config(
        app=app_config,
        player=player_config,
        ipc=ipc_config,
    )
