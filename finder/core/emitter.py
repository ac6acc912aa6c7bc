from __future__ import annotations

import logging
import threading
from typing import Callable

from .errors import TransportError
from .events import BaseEvent, encode_event

LOGGER = logging.getLogger(__name__)


class EventEmitter:
    """Writes framed events, in submission order, to one output channel.

    ``write`` receives each encoded SSE frame. Once a terminal event has been
    written, or a write has failed, the emitter is closed and every later
    ``emit`` is a no-op returning False. A failed write is reported through
    ``on_transport_error`` instead of being retried.
    """

    def __init__(
        self,
        write: Callable[[str], None],
        on_transport_error: Callable[[TransportError], None] | None = None,
    ):
        self._write = write
        self.on_transport_error = on_transport_error
        self._lock = threading.Lock()
        self._closed = False
        self.sent = 0
        self.terminal_event: BaseEvent | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: BaseEvent) -> bool:
        frame = encode_event(event)
        with self._lock:
            if self._closed:
                return False
            try:
                self._write(frame)
            except Exception as exc:
                self._closed = True
                err = TransportError(f"write failed for {event.type!r}: {exc}")
                LOGGER.info("event stream closed by transport: %s", err)
            else:
                self.sent += 1
                if event.terminal:
                    self._closed = True
                    self.terminal_event = event
                return True
        if self.on_transport_error is not None:
            self.on_transport_error(err)
        return False

    def close(self) -> None:
        with self._lock:
            self._closed = True
