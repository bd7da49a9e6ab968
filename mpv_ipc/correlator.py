"""Request/reply correlation over a single mpv IPC connection."""

from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import CommandError, ConnectionLost
from .models import PendingRequest
from .protocol import Reply, encode_command

_LOGGER = logging.getLogger(__name__)

SendLine = Callable[[bytes], None]


class RequestCorrelator:
    """Assigns request ids and resolves each command future exactly once.

    Every future created by issue() ends in exactly one of: the matching
    reply's data, a CommandError, or ConnectionLost from fail_all().
    """

    def __init__(self, send: SendLine) -> None:
        self._send = send
        self._pending: Dict[int, PendingRequest] = {}
        self._next_id = 1

    @property
    def pending(self) -> Mapping[int, PendingRequest]:
        return MappingProxyType(self._pending)

    def issue(self, verb: str, *args: Any) -> "asyncio.Future[Any]":
        """Sends a command and returns the future of its reply data."""
        request_id = self._allocate_id()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        line = encode_command(verb, args, request_id)

        self._pending[request_id] = PendingRequest(request_id=request_id, verb=verb, future=future)
        try:
            self._send(line)
        except Exception:
            # Nothing reached the wire, so the slot is freed right away
            del self._pending[request_id]
            raise

        _LOGGER.debug("-> [%s] %s %r", request_id, verb, args)
        return future

    def resolve(self, reply: Reply) -> bool:
        """Completes the request matching reply.request_id.

        Returns False when no live request matches (unknown id, duplicate
        reply, or the caller already gave up).
        """
        request = self._pending.pop(reply.request_id, None)
        if request is None:
            _LOGGER.debug("Dropping reply for unknown request_id %s", reply.request_id)
            return False

        _LOGGER.debug("<- [%s] %s: %s", reply.request_id, request.verb, reply.error)
        if request.future.done():
            _LOGGER.debug("Caller of request %s (%s) no longer waiting", reply.request_id, request.verb)
            return False

        if reply.success:
            request.future.set_result(reply.data)
        else:
            request.future.set_exception(
                CommandError(reply.error, verb=request.verb, request_id=reply.request_id)
            )
        return True

    def fail_all(self, error: Optional[BaseException] = None) -> int:
        """Fails every pending request with ConnectionLost. Returns how many."""
        pending = self._pending
        self._pending = {}

        failed = 0
        for request in pending.values():
            if request.future.done():
                continue
            exc = ConnectionLost(
                f"mpv IPC connection lost before reply to {request.verb!r}",
                request_id=request.request_id,
            )
            if error is not None:
                exc.__cause__ = error
            request.future.set_exception(exc)
            failed += 1

        if failed:
            _LOGGER.debug("Failed %d pending request(s) after connection loss", failed)
        return failed

    def stale(self, older_than: float) -> List[PendingRequest]:
        """Requests still waiting after older_than seconds."""
        return [r for r in self._pending.values() if r.age() >= older_than]

    def _allocate_id(self) -> int:
        request_id = self._next_id
        while request_id in self._pending:
            request_id += 1
        self._next_id = request_id + 1
        return request_id
