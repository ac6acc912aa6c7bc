"""Stream events and their Server-Sent Events framing.

Every event travels as one SSE frame::

    event: <type>
    data: <json payload>

The payload is the event model dumped with camelCase keys and without the
``type`` tag, which travels in the ``event:`` line instead. Decoding puts the
tag back and validates into the matching model of the ``StreamEvent`` union.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Iterable, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .normalize import JobPosting

TERMINAL_EVENTS = frozenset({"complete", "error"})


class BaseEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @property
    def terminal(self) -> bool:
        return getattr(self, "type") in TERMINAL_EVENTS

    def payload(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude={"type"})
        return {k: v for k, v in data.items() if v is not None}


class StartEvent(BaseEvent):
    type: Literal["start"] = "start"
    message: str = "Search started"
    query: str | None = None
    site: str | None = None
    location: str | None = None


class ProgressEvent(BaseEvent):
    type: Literal["progress"] = "progress"
    platform: str
    message: str
    processed: int | None = None
    total: int | None = None


class JobsEvent(BaseEvent):
    type: Literal["jobs"] = "jobs"
    platform: str
    jobs: list[JobPosting]
    jobs_from_platform: int = Field(0, alias="jobsFromPlatform")
    total_jobs_so_far: int = Field(0, alias="totalJobsSoFar")


class PlatformCompleteEvent(BaseEvent):
    type: Literal["platform-complete"] = "platform-complete"
    platform: str
    job_count: int = Field(alias="jobCount")
    total_jobs: int | None = Field(None, alias="totalJobs")
    error: str | None = None


class CompleteEvent(BaseEvent):
    type: Literal["complete"] = "complete"
    total_jobs: int = Field(alias="totalJobs")


class ErrorEvent(BaseEvent):
    type: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[
    Union[StartEvent, ProgressEvent, JobsEvent, PlatformCompleteEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]
_STREAM_EVENT = TypeAdapter(StreamEvent)


def encode_event(event: BaseEvent) -> str:
    data = json.dumps(event.payload(), separators=(",", ":"))
    return f"event: {event.type}\ndata: {data}\n\n"


def parse_event(name: str, data: str) -> StreamEvent:
    """Decode one SSE message into its typed event.

    Raises ``ValueError`` for malformed JSON or a payload that does not fit
    the named event (pydantic's ValidationError is a ValueError).
    """
    payload = json.loads(data) if data.strip() else {}
    if not isinstance(payload, dict):
        raise ValueError(f"event {name!r} payload is not an object")
    return _STREAM_EVENT.validate_python({**payload, "type": name})


@dataclass(frozen=True)
class SseMessage:
    event: str
    data: str


class SseDecoder:
    """Incremental line-oriented SSE parser (event/data fields only)."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []

    def feed(self, line: str) -> SseMessage | None:
        line = line.rstrip("\r\n")
        if not line:
            if not self._data and not self._event:
                return None
            msg = SseMessage(self._event or "message", "\n".join(self._data))
            self._event, self._data = "", []
            return msg
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        return None


def iter_messages(lines: Iterable[str]) -> Iterator[SseMessage]:
    decoder = SseDecoder()
    for line in lines:
        msg = decoder.feed(line)
        if msg is not None:
            yield msg
