"""Consume the search event stream over HTTP.

``consume`` opens one connection, hands every decoded event to ``handler``
in arrival order and settles on the terminal event: it returns the
``complete`` event, raises :class:`StreamError` for ``error`` and
:class:`StreamConnectionError` when the connection fails or ends early.
The response is closed in every case.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

import requests

from finder.core.errors import FinderError
from finder.core.events import TERMINAL_EVENTS, CompleteEvent, ErrorEvent, StreamEvent, iter_messages, parse_event

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
STREAM_PATH = "/api/search-stream"


class StreamError(FinderError):
    """The server ended the run with an ``error`` event."""

    def __init__(self, message: str, event: Optional[ErrorEvent] = None):
        super().__init__(message)
        self.event = event


class StreamConnectionError(StreamError):
    """Transport failure, or the stream ended without a terminal event."""


Handler = Callable[[StreamEvent], None]


def consume(
    params: Mapping[str, Any],
    handler: Handler,
    *,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = 60.0,
    session: Optional[requests.Session] = None,
) -> CompleteEvent:
    http = session or requests
    url = base_url.rstrip("/") + STREAM_PATH
    query = {k: v for k, v in params.items() if v is not None}
    try:
        resp = http.get(
            url,
            params=query,
            stream=True,
            timeout=timeout,
            headers={"Accept": "text/event-stream"},
        )
    except requests.RequestException as exc:
        raise StreamConnectionError("Connection error") from exc

    try:
        if resp.status_code != 200:
            raise StreamConnectionError(f"Connection error (HTTP {resp.status_code})")
        resp.encoding = "utf-8"
        try:
            for msg in iter_messages(resp.iter_lines(decode_unicode=True)):
                try:
                    event = parse_event(msg.event, msg.data)
                except ValueError as exc:
                    if msg.event in TERMINAL_EVENTS:
                        raise StreamConnectionError(f"Malformed {msg.event} event") from exc
                    log.warning("dropping malformed %r event: %s", msg.event, exc)
                    continue
                handler(event)
                if isinstance(event, CompleteEvent):
                    return event
                if isinstance(event, ErrorEvent):
                    raise StreamError(event.error, event)
        except requests.RequestException as exc:
            raise StreamConnectionError("Connection error") from exc
        raise StreamConnectionError("Connection error (stream ended before completion)")
    finally:
        resp.close()
