"""Fan one search out to every platform and stream the merged results.

A :class:`SearchRun` owns everything scoped to one query: the normalized
query, the seen set, counters and the emitter. Platform searchers run in a
thread pool and only ever talk to the run through a single result queue; the
thread calling :meth:`SearchRun.run` is the sole reader of that queue and the
sole writer of events, so events leave in exactly the order they are built.

Lifecycle::

    IDLE -> RUNNING -> COMPLETED   every platform finished (ok, error or timeout)
                    -> FAILED      run-level fault, nothing else is awaited
                    -> CANCELLED   client gone / explicit abort, nothing more is sent
"""
from __future__ import annotations

import concurrent.futures
import logging
import math
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, NamedTuple, Sequence

from pydantic import ValidationError

from .dedupe import Deduplicator
from .emitter import EventEmitter
from .errors import PlatformError, RunError
from .events import (
    BaseEvent,
    CompleteEvent,
    ErrorEvent,
    JobsEvent,
    PlatformCompleteEvent,
    ProgressEvent,
    StartEvent,
)
from .normalize import JobPosting, SearchQuery

if TYPE_CHECKING:
    from finder.providers.base import PlatformSearcher

LOGGER = logging.getLogger(__name__)

POLL_INTERVAL = 0.1  # seconds between cancellation / deadline checks

SearcherResolver = Callable[[SearchQuery], Sequence["PlatformSearcher"]]
Preflight = Callable[[SearchQuery], None]
FinishHook = Callable[[SearchQuery, list[JobPosting]], None]


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class _Message(NamedTuple):
    kind: str            # "started" | "batch" | "done"
    platform: str
    jobs: list[JobPosting] | None = None
    error: str | None = None


@dataclass
class PlatformOutcome:
    platform: str
    job_count: int = 0
    error: str | None = None
    finished: bool = False


@dataclass
class RunOptions:
    platform_timeout: float = 25.0
    max_workers: int = 8
    dedup_key: str = "url"


def _describe_validation(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ())) or "query"
    return f"Invalid search request ({loc}): {first.get('msg', 'invalid value')}"


def _echo(value: Any) -> str | None:
    return None if value is None else str(value)


class SearchRun:
    def __init__(
        self,
        params: SearchQuery | Mapping[str, Any],
        *,
        resolve: SearcherResolver,
        emitter: EventEmitter,
        options: RunOptions | None = None,
        preflight: Preflight | None = None,
        on_finish: FinishHook | None = None,
    ):
        self.params = params
        self.resolve = resolve
        self.emitter = emitter
        self.options = options or RunOptions()
        self.preflight = preflight
        self.on_finish = on_finish

        self.state = RunState.IDLE
        self.query: SearchQuery | None = None
        self.jobs: list[JobPosting] = []
        self.outcomes: dict[str, PlatformOutcome] = {}
        self.error: str | None = None

        self._dedup: Deduplicator | None = Deduplicator(self.options.dedup_key)  # type: ignore[arg-type]
        self._results: "queue.Queue[_Message]" = queue.Queue()
        self._cancelled = threading.Event()   # client gone or explicit abort
        self._stop = threading.Event()        # tells platform tasks to wind down
        self._futures: list[concurrent.futures.Future] = []
        self._executor: concurrent.futures.ThreadPoolExecutor | None = None
        self._workers = 1

        if self.emitter.on_transport_error is None:
            self.emitter.on_transport_error = lambda _err: self.cancel()

    # ------------------------------------------------------------------
    # public surface
    # ------------------------------------------------------------------
    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def total_jobs(self) -> int:
        return len(self.jobs)

    def cancel(self) -> None:
        """Stop emitting and abandon outstanding platform tasks. Safe to call at any time."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._stop.set()
        self.emitter.close()
        if self.state in (RunState.IDLE, RunState.RUNNING):
            LOGGER.info("search-run cancelled query=%r", getattr(self.query, "query", None))

    def pending_tasks(self) -> int:
        return sum(1 for f in self._futures if not f.done())

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Block until every platform task has returned. True if none is left running."""
        if not self._futures:
            return True
        _, not_done = concurrent.futures.wait(self._futures, timeout=timeout)
        return not not_done

    def run(self) -> RunState:
        if self.state is not RunState.IDLE:
            raise RuntimeError("a SearchRun can only be run once")
        self.state = RunState.RUNNING
        try:
            self._run()
        except RunError as exc:
            self._fail(str(exc))
        except Exception as exc:
            LOGGER.exception("search-run crashed")
            self._fail(f"Search failed: {exc}")
        finally:
            if self.state is RunState.RUNNING:
                # left early because the output channel went away
                self.state = RunState.CANCELLED
            self._release()
        return self.state

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def _run(self) -> None:
        raw = self.params if isinstance(self.params, Mapping) else self.params.model_dump()
        start = StartEvent(
            query=_echo(raw.get("query")),
            site=_echo(raw.get("site")),
            location=_echo(raw.get("location")),
        )
        if not self._emit(start):
            return

        try:
            self.query = (
                self.params
                if isinstance(self.params, SearchQuery)
                else SearchQuery.model_validate(dict(self.params))
            )
        except ValidationError as exc:
            raise RunError(_describe_validation(exc)) from exc

        if self.preflight is not None:
            self.preflight(self.query)

        searchers = self._unique(self.resolve(self.query))
        if not searchers:
            raise RunError(f"No platforms available for site {self.query.site!r}")

        LOGGER.info(
            "search-run start query=%r site=%s platforms=%s",
            self.query.query, self.query.site, ",".join(s.name for s in searchers),
        )
        self._dispatch(searchers)
        self._collect(searchers)

    def _dispatch(self, searchers: Sequence["PlatformSearcher"]) -> None:
        self._workers = max(1, min(len(searchers), self.options.max_workers))
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="platform"
        )
        for s in searchers:
            self.outcomes[s.name] = PlatformOutcome(s.name)
            self._futures.append(self._executor.submit(self._run_platform, s))

    def _collect(self, searchers: Sequence["PlatformSearcher"]) -> None:
        total = len(searchers)
        timeout = self.options.platform_timeout
        # Each platform gets its own budget from the moment a worker picks it
        # up. Queued platforms are bounded by the number of waves the pool needs.
        run_deadline = time.monotonic() + timeout * math.ceil(total / self._workers)
        deadlines: dict[str, float] = {}
        pending = {s.name for s in searchers}

        def due(name: str) -> float:
            return min(deadlines.get(name, run_deadline), run_deadline)

        while pending:
            if self._cancelled.is_set():
                self.state = RunState.CANCELLED
                return

            now = time.monotonic()
            expired = sorted(name for name in pending if now >= due(name))
            for name in expired:
                LOGGER.warning("platform %s timed out", name)
                pending.discard(name)
                self._finish_platform(name, f"Timed out after {timeout:g}s", total)
            if not pending:
                break

            next_deadline = min(due(n) for n in pending)
            try:
                msg = self._results.get(timeout=min(POLL_INTERVAL, next_deadline - now))
            except queue.Empty:
                continue
            if msg.platform not in pending:
                continue  # late output from a platform already closed out

            if msg.kind == "started":
                deadlines[msg.platform] = time.monotonic() + timeout
                processed = total - len(pending)
                self._emit(ProgressEvent(
                    platform=msg.platform,
                    message=f"Searching {msg.platform}...",
                    processed=processed,
                    total=total,
                ))
            elif msg.kind == "batch":
                self._accept_batch(msg.platform, msg.jobs or [])
            elif msg.kind == "done":
                pending.discard(msg.platform)
                self._finish_platform(msg.platform, msg.error, total)

        if self._cancelled.is_set():
            self.state = RunState.CANCELLED
            return

        self.state = RunState.COMPLETED
        self._emit(CompleteEvent(total_jobs=self.total_jobs))
        LOGGER.info(
            "search-run complete query=%r total=%d failed=%d",
            self.query.query if self.query else None,
            self.total_jobs,
            sum(1 for o in self.outcomes.values() if o.error),
        )
        if self.on_finish is not None and self.query is not None:
            try:
                self.on_finish(self.query, list(self.jobs))
            except Exception:
                LOGGER.exception("search-run finish hook failed")

    def _accept_batch(self, platform: str, batch: list[JobPosting]) -> None:
        assert self._dedup is not None
        accepted = self._dedup.filter(batch)
        if not accepted:
            return
        self.jobs.extend(accepted)
        outcome = self.outcomes[platform]
        outcome.job_count += len(accepted)
        self._emit(JobsEvent(
            platform=platform,
            jobs=accepted,
            jobs_from_platform=len(accepted),
            total_jobs_so_far=self.total_jobs,
        ))

    def _finish_platform(self, platform: str, error: str | None, total: int) -> None:
        outcome = self.outcomes[platform]
        outcome.finished = True
        outcome.error = error
        self._emit(PlatformCompleteEvent(
            platform=platform,
            job_count=outcome.job_count,
            total_jobs=self.total_jobs,
            error=error,
        ))

    def _fail(self, message: str) -> None:
        if self._cancelled.is_set():
            self.state = RunState.CANCELLED
            return
        self.state = RunState.FAILED
        self.error = message
        LOGGER.warning("search-run failed: %s", message)
        self._emit(ErrorEvent(error=message))

    def _release(self) -> None:
        # Outstanding tasks are abandoned; they notice the flag between pages
        self._stop.set()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if self._dedup is not None:
            self._dedup.clear()
            self._dedup = None

    def _emit(self, event: BaseEvent) -> bool:
        if self._cancelled.is_set():
            return False
        return self.emitter.emit(event)

    # ------------------------------------------------------------------
    # worker side
    # ------------------------------------------------------------------
    def _run_platform(self, searcher: "PlatformSearcher") -> None:
        name = searcher.name
        if self._stop.is_set():
            return
        self._results.put(_Message("started", name))
        error: str | None = None
        try:
            for batch in searcher.search(
                self.query,
                timeout=self.options.platform_timeout,
                cancelled=self._stop,
            ):
                if self._stop.is_set():
                    return
                self._results.put(_Message("batch", name, jobs=list(batch)))
        except PlatformError as exc:
            LOGGER.warning("platform %s failed: %s", name, exc.reason)
            error = exc.reason
        except Exception as exc:
            LOGGER.exception("platform %s crashed", name)
            error = f"{type(exc).__name__}: {exc}"
        self._results.put(_Message("done", name, error=error))

    @staticmethod
    def _unique(searchers: Iterable["PlatformSearcher"]) -> list["PlatformSearcher"]:
        seen: dict[str, "PlatformSearcher"] = {}
        for s in searchers:
            seen.setdefault(s.name, s)
        return list(seen.values())


@dataclass
class SearchOutcome:
    """Synchronous projection of one run: what the stream would have delivered."""

    state: RunState
    jobs: list[JobPosting] = field(default_factory=list)
    platforms: dict[str, PlatformOutcome] = field(default_factory=dict)
    error: str | None = None
    events: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETED


def collect_search(
    params: SearchQuery | Mapping[str, Any],
    *,
    resolve: SearcherResolver,
    options: RunOptions | None = None,
    preflight: Preflight | None = None,
    on_finish: FinishHook | None = None,
) -> SearchOutcome:
    """Run one aggregation to its terminal event and return the accumulated jobs."""
    frames: list[str] = []
    run = SearchRun(
        params,
        resolve=resolve,
        emitter=EventEmitter(frames.append),
        options=options,
        preflight=preflight,
        on_finish=on_finish,
    )
    state = run.run()
    return SearchOutcome(
        state=state,
        jobs=list(run.jobs),
        platforms=dict(run.outcomes),
        error=run.error,
        events=frames,
    )
