"""Dispatch of decoded IPC messages to the correlator or the translator."""

import logging
from typing import Any

from .correlator import RequestCorrelator
from .events import EventTranslator
from .protocol import AsyncError, Event, Reply, decode_message

_LOGGER = logging.getLogger(__name__)


class MessageRouter:
    """Replies go to the correlator, everything else to the translator."""

    def __init__(self, correlator: RequestCorrelator, translator: EventTranslator) -> None:
        self.correlator = correlator
        self.translator = translator

    def route(self, raw: Any) -> None:
        message = decode_message(raw)

        if isinstance(message, Reply):
            self.correlator.resolve(message)
        elif isinstance(message, Event):
            self.translator.handle_event(message)
        elif isinstance(message, AsyncError):
            self.translator.handle_async_error(message)
        else:
            _LOGGER.warning("Unroutable mpv message: %r", raw)
