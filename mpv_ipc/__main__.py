#!/usr/bin/env python3
import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .config import Config, load_config_from_json
from .errors import StartError
from .event_bus import EventBus, EventHandler, subscribe
from .mpv_player import MpvMediaPlayer

_LOGGER = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Event logger
# -----------------------------------------------------------------------------

class PlayerEventLogger(EventHandler):
    """Logs every semantic player event and stops the CLI when mpv goes away."""

    def __init__(self, event_bus: EventBus, done: asyncio.Event, auto_restart: bool, verbose: bool = False):
        super().__init__(event_bus)
        self.done = done
        self.auto_restart = auto_restart
        # Per-property and position updates are only shown at INFO when verbose
        self.detail_level = logging.INFO if verbose else logging.DEBUG

    @subscribe
    def started(self, data: dict):
        _LOGGER.info("started")

    @subscribe
    def stopped(self, data: dict):
        _LOGGER.info("stopped %s", _payload(data))

    @subscribe
    def playback_finished(self, data: dict):
        _LOGGER.info("playback finished")

    @subscribe
    def paused(self, data: dict):
        _LOGGER.info("paused")

    @subscribe
    def resumed(self, data: dict):
        _LOGGER.info("resumed")

    @subscribe
    def seek(self, data: dict):
        _LOGGER.info("seek %s -> %s", data.get("start"), data.get("end"))

    @subscribe
    def status(self, data: dict):
        _LOGGER.log(self.detail_level, "status %s = %r", data.get("property"), data.get("value"))

    @subscribe
    def timeposition(self, data: dict):
        _LOGGER.log(self.detail_level, "position %.1f", data.get("value"))

    @subscribe
    def error(self, data: dict):
        err = data.get("error")
        _LOGGER.error("mpv error: %s", err)
        if isinstance(err, StartError):
            # Restart after a crash failed; nothing left to control
            self.done.set()

    @subscribe
    def quit(self, data: dict):
        _LOGGER.info("mpv quit")
        self.done.set()

    @subscribe
    def crashed(self, data: dict):
        if data.get("restarted"):
            _LOGGER.warning("mpv recovered after crash")
        elif not self.auto_restart:
            _LOGGER.error("mpv crashed (exit code %s)", data.get("exit_code"))
            self.done.set()
        else:
            _LOGGER.warning("mpv crashed (exit code %s); restarting", data.get("exit_code"))


def _payload(data: dict) -> dict:
    return {k: v for k, v in data.items() if k != "__topic"}

# -----------------------------------------------------------------------------
# Main Application
# -----------------------------------------------------------------------------

async def main(argv: Optional[List[str]] = None) -> int:
    config, media = _init_basics(argv)

    loop = asyncio.get_running_loop()
    event_bus = EventBus()
    done = asyncio.Event()
    event_logger = PlayerEventLogger(event_bus, done, config.player.auto_restart, verbose=config.app.verbose)

    player = MpvMediaPlayer(config=config, event_bus=event_bus)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, done.set)
        except (NotImplementedError, RuntimeError):
            pass

    try:
        await player.start()
    except StartError as err:
        _LOGGER.critical("Could not start mpv: %s", err)
        return 1

    try:
        if media:
            await player.play(media)
        await done.wait()
    finally:
        # --- Cleanup ---
        _LOGGER.debug("Shutting down...")
        await player.quit()
        event_logger.unsubscribe_all()

    return 0

# -----------------------------------------------------------------------------
# Helper Functions
# -----------------------------------------------------------------------------

def _init_basics(argv: Optional[List[str]]):
    """Parses arguments, loads config and sets up logging."""
    parser = argparse.ArgumentParser(prog="mpv-ipc")
    parser.add_argument(
        "-c", "--config", type=Path, required=False,
        default=None,
        help="Path to configuration.json file"
    )
    parser.add_argument("--socket", help="IPC socket path (overrides config)")
    parser.add_argument("--binary", help="mpv binary (overrides config)")
    parser.add_argument("--audio-only", action="store_true", help="Run mpv without video output")
    parser.add_argument("--no-restart", action="store_true", help="Do not restart mpv after a crash")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--verbose", action="store_true", help="Log every property and position update")
    parser.add_argument("media", nargs="*", help="Files or URLs to play")
    args = parser.parse_args(argv)

    config = load_config_from_json(args.config) if args.config else Config()

    if args.socket:
        config.ipc.socket = args.socket
    if args.binary:
        config.player.binary = args.binary
    if args.audio_only:
        config.player.audio_only = True
    if args.no_restart:
        config.player.auto_restart = False
    if args.debug:
        config.app.debug = True
    if args.verbose:
        config.app.verbose = True

    logging.basicConfig(
        level=logging.DEBUG if config.app.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    if args.config:
        _LOGGER.info("Loaded configuration from: %s", args.config)

    return config, args.media


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
