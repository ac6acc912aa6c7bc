import argparse
import json
import logging
import os
import sys
from datetime import datetime

from finder.config import get_settings, load_platforms
from finder.core.aggregator import RunOptions, RunState, SearchRun
from finder.core.emitter import EventEmitter
from finder.core.events import (
    CompleteEvent,
    ErrorEvent,
    JobsEvent,
    PlatformCompleteEvent,
    ProgressEvent,
    StartEvent,
    iter_messages,
    parse_event,
)
from finder.providers import get as get_searcher
from finder.providers import preflight, searchers_for_query


# --- JSON helpers ---
def _json_default(o):
    if isinstance(o, datetime):
        return o.isoformat()
    return str(o)


def _print_event(event) -> None:
    """Human readable progress line for one stream event."""
    if isinstance(event, StartEvent):
        print(f"Searching for {event.query!r} on {event.site} ({event.location})")
    elif isinstance(event, ProgressEvent):
        print(f"  {event.message}")
    elif isinstance(event, JobsEvent):
        for job in event.jobs:
            where = f" [{job.location}]" if job.location else ""
            print(f"  + {job.title} @ {job.company}{where}\n      {job.url}")
    elif isinstance(event, PlatformCompleteEvent):
        note = f" (error: {event.error})" if event.error else ""
        print(f"  {event.platform}: {event.job_count} new jobs{note}")
    elif isinstance(event, CompleteEvent):
        print(f"Done: {event.total_jobs} unique jobs")
    elif isinstance(event, ErrorEvent):
        print(f"Search failed: {event.error}", file=sys.stderr)


def _run_local(params: dict, args, handler) -> bool:
    settings = get_settings()
    options = RunOptions(
        platform_timeout=args.timeout or settings.platform_timeout,
        max_workers=settings.max_workers,
        dedup_key=args.dedup_key or settings.dedup_key,
    )
    if args.platforms_file:
        sites = load_platforms(args.platforms_file)
        resolve = lambda _q: [get_searcher(s) for s in sites]  # noqa: E731
    else:
        resolve = searchers_for_query

    def write(frame: str) -> None:
        # re-decode our own frames so local and remote output look the same
        for msg in iter_messages(frame.splitlines() + [""]):
            handler(parse_event(msg.event, msg.data))

    run = SearchRun(params, resolve=resolve, emitter=EventEmitter(write), options=options, preflight=preflight)
    try:
        state = run.run()
    except KeyboardInterrupt:
        run.cancel()
        return False
    return state is RunState.COMPLETED


def _run_remote(params: dict, args, handler) -> bool:
    from finder.client.stream import StreamError, consume

    try:
        consume(params, handler, base_url=args.base_url)
    except StreamError as exc:
        if exc.event is None:
            print(f"Search failed: {exc}", file=sys.stderr)
        return False
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Search ATS job boards for postings")
    parser.add_argument("query", type=str, help="Job title or keywords")
    parser.add_argument("--site", type=str, default="all",
                        help="ATS domain to search (e.g. lever.co) or 'all' for the default platform set")
    parser.add_argument("--location", choices=["all", "remote", "onsite", "hybrid", "united-states"], default="all")
    parser.add_argument("--time-filter", dest="time_filter", default="all",
                        choices=["all", "h1", "h4", "h8", "h12", "d", "h48", "h72", "w", "m"],
                        help="Only postings indexed within this window")
    parser.add_argument("--json", action="store_true", help="Print the collected jobs as JSON instead of progress lines")
    parser.add_argument("--base-url", type=str, default=None,
                        help="Stream from a running API server instead of searching in-process")
    parser.add_argument("--dedup-key", choices=["url", "composite"], default=None,
                        help="Identity rule for duplicates (default: env FINDER_DEDUP_KEY or url)")
    parser.add_argument("--timeout", type=float, default=None, help="Per-platform timeout in seconds")
    parser.add_argument("--platforms-file", type=str, default=None,
                        help="JSON file listing sites to search (overrides --site expansion)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.getenv("FINDER_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    params = {"query": args.query, "site": args.site, "location": args.location, "timeFilter": args.time_filter}
    collected: list = []

    def handler(event) -> None:
        if isinstance(event, JobsEvent):
            collected.extend(event.jobs)
        if args.json:
            if isinstance(event, ErrorEvent):
                print(f"Search failed: {event.error}", file=sys.stderr)
            return
        _print_event(event)

    if args.base_url:
        ok = _run_remote(params, args, handler)
    else:
        ok = _run_local(params, args, handler)

    if args.json:
        print(json.dumps([j.to_wire() for j in collected], indent=2, default=_json_default))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
