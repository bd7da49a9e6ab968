"""Utility methods."""

import logging
import os
import shutil
from typing import Optional

from .errors import StartError

_LOGGER = logging.getLogger(__name__)


def resolve_binary(binary: Optional[str] = None) -> str:
    """
    Find the mpv executable.

    An explicit path is used as-is when it exists; a bare name (or the
    default "mpv") is looked up on PATH.
    """
    candidate = binary or "mpv"

    if os.path.sep in candidate:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
        raise StartError(f"mpv binary is not executable: {candidate}")

    found = shutil.which(candidate)
    if found is None:
        raise StartError(f"mpv binary {candidate!r} not found on PATH")

    _LOGGER.debug("Resolved mpv binary %r -> %s", candidate, found)
    return found


def remove_stale_socket(path: str) -> None:
    """Remove a socket file left behind by a previous mpv instance."""
    try:
        if os.path.exists(path):
            os.remove(path)
            _LOGGER.debug("Removed stale IPC socket %s", path)
    except OSError:
        _LOGGER.warning("Could not remove stale IPC socket %s", path, exc_info=True)


def exit_code(returncode: Optional[int]) -> Optional[int]:
    """asyncio reports death by signal N as -N; treat that as "no exit code"."""
    if returncode is None or returncode < 0:
        return None
    return returncode
