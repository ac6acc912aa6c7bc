import threading
import time
import unittest
from unittest import mock

from finder.core.aggregator import RunOptions, RunState, SearchRun, collect_search
from finder.core.emitter import EventEmitter
from finder.core.errors import PlatformError, RunError
from finder.core.events import (
    CompleteEvent,
    ErrorEvent,
    JobsEvent,
    PlatformCompleteEvent,
    ProgressEvent,
    StartEvent,
    encode_event,
    iter_messages,
    parse_event,
)
from finder.core.normalize import JobPosting

QUERY = {"query": "backend engineer", "location": "remote"}


def _job(n, platform="A"):
    return JobPosting(
        title=f"Backend Engineer {n}",
        company="Acme",
        url=f"https://boards.greenhouse.io/acme/jobs/{n}",
        platform=platform,
    )


class FakeSearcher:
    def __init__(self, name, batches=(), error=None, hang=False, delay=0.0):
        self.name = name
        self.batches = [list(b) for b in batches]
        self.error = error
        self.hang = hang
        self.delay = delay
        self.calls = 0

    def search(self, query, *, timeout, cancelled):
        self.calls += 1
        for batch in self.batches:
            if self.delay:
                time.sleep(self.delay)
            yield batch
        if self.hang:
            cancelled.wait(5)
            return
        if self.error is not None:
            raise self.error


def decode(frames):
    lines = "".join(frames).split("\n")
    return [parse_event(m.event, m.data) for m in iter_messages(lines)]


def run_search(searchers, params=QUERY, **options):
    out = collect_search(params, resolve=lambda q: searchers, options=RunOptions(**options))
    return out, decode(out.events)


class SearchRunTests(unittest.TestCase):
    def assertSingleTerminal(self, events):
        terminal = [e for e in events if isinstance(e, (CompleteEvent, ErrorEvent))]
        self.assertEqual(len(terminal), 1)
        self.assertIs(events[-1], terminal[0])

    def test_duplicate_across_platforms_is_emitted_once(self):
        dup = _job(99)
        a = FakeSearcher("A", batches=[[_job(1), dup]])
        b = FakeSearcher("B", batches=[[_job(2), _job(3), dup]])
        out, events = run_search([a, b])

        self.assertIsInstance(events[0], StartEvent)
        self.assertSingleTerminal(events)
        self.assertEqual(events[-1].total_jobs, 4)
        emitted = [j.url for e in events if isinstance(e, JobsEvent) for j in e.jobs]
        self.assertEqual(len(emitted), 4)
        self.assertEqual(len(set(emitted)), 4)
        self.assertEqual(out.state, RunState.COMPLETED)
        self.assertEqual(len(out.jobs), 4)

        done = {e.platform: e for e in events if isinstance(e, PlatformCompleteEvent)}
        self.assertEqual(set(done), {"A", "B"})
        self.assertEqual(done["A"].job_count + done["B"].job_count, 4)

    def test_progress_precedes_platform_complete(self):
        _, events = run_search([FakeSearcher("A", batches=[[_job(1)]])])
        kinds = [e.type for e in events]
        self.assertEqual(kinds, ["start", "progress", "jobs", "platform-complete", "complete"])
        progress = events[1]
        self.assertIsInstance(progress, ProgressEvent)
        self.assertEqual(progress.message, "Searching A...")
        self.assertEqual((progress.processed, progress.total), (0, 1))
        self.assertEqual(events[2].total_jobs_so_far, 1)

    def test_timed_out_platform_is_closed_out_and_run_completes(self):
        slow = FakeSearcher("A", hang=True)
        fast = FakeSearcher("B", batches=[[_job(1, "B")]])
        out, events = run_search([slow, fast], platform_timeout=0.3)

        self.assertIsInstance(events[-1], CompleteEvent)
        self.assertEqual(events[-1].total_jobs, 1)
        done = {e.platform: e for e in events if isinstance(e, PlatformCompleteEvent)}
        self.assertEqual(done["A"].job_count, 0)
        self.assertIn("Timed out", done["A"].error)
        self.assertEqual(done["B"].job_count, 1)
        self.assertIsNone(done["B"].error)
        self.assertIn("Timed out", out.platforms["A"].error)

    def test_queued_platform_gets_its_own_budget(self):
        # one worker: B only starts once A has used most of its budget
        a = FakeSearcher("A", batches=[[_job(1)]], delay=0.3)
        b = FakeSearcher("B", batches=[[_job(2, "B")]], delay=0.3)
        out, events = run_search([a, b], platform_timeout=0.5, max_workers=1)

        self.assertIsInstance(events[-1], CompleteEvent)
        self.assertEqual(events[-1].total_jobs, 2)
        done = {e.platform: e for e in events if isinstance(e, PlatformCompleteEvent)}
        self.assertEqual((done["A"].job_count, done["A"].error), (1, None))
        self.assertEqual((done["B"].job_count, done["B"].error), (1, None))
        self.assertEqual(b.calls, 1)

    def test_every_platform_failing_still_completes(self):
        a = FakeSearcher("A", error=PlatformError("A", "HTTP 500"))
        b = FakeSearcher("B", error=RuntimeError("parser exploded"))
        out, events = run_search([a, b])

        self.assertSingleTerminal(events)
        self.assertIsInstance(events[-1], CompleteEvent)
        self.assertEqual(events[-1].total_jobs, 0)
        done = {e.platform: e for e in events if isinstance(e, PlatformCompleteEvent)}
        self.assertEqual(done["A"].error, "HTTP 500")
        self.assertEqual(done["B"].error, "RuntimeError: parser exploded")
        self.assertTrue(out.ok)

    def test_platform_error_after_partial_results_keeps_the_jobs(self):
        a = FakeSearcher("A", batches=[[_job(1)]], error=PlatformError("A", "page 2 failed"))
        out, events = run_search([a])
        self.assertEqual(events[-1].total_jobs, 1)
        done = [e for e in events if isinstance(e, PlatformCompleteEvent)][0]
        self.assertEqual((done.job_count, done.error), (1, "page 2 failed"))

    def test_invalid_query_errors_before_dispatch(self):
        resolve = mock.Mock(return_value=[FakeSearcher("A")])
        out = collect_search({"query": "   "}, resolve=resolve)
        events = decode(out.events)

        self.assertEqual([e.type for e in events], ["start", "error"])
        self.assertIn("query", events[-1].error)
        resolve.assert_not_called()
        self.assertEqual(out.state, RunState.FAILED)

    def test_non_string_params_still_start_then_error(self):
        resolve = mock.Mock(return_value=[FakeSearcher("A")])
        out = collect_search({"query": 123, "location": 42}, resolve=resolve)
        events = decode(out.events)

        self.assertEqual([e.type for e in events], ["start", "error"])
        self.assertEqual((events[0].query, events[0].location), ("123", "42"))
        self.assertIn("query", events[-1].error)
        resolve.assert_not_called()
        self.assertEqual(out.state, RunState.FAILED)

    def test_preflight_failure_is_a_run_error(self):
        searcher = FakeSearcher("A", batches=[[_job(1)]])

        def preflight(_q):
            raise RunError("Search quota exceeded. Please try again later.")

        out = collect_search(QUERY, resolve=lambda q: [searcher], preflight=preflight)
        events = decode(out.events)
        self.assertEqual([e.type for e in events], ["start", "error"])
        self.assertEqual(events[-1].error, "Search quota exceeded. Please try again later.")
        self.assertEqual(searcher.calls, 0)

    def test_no_platforms_is_a_run_error(self):
        out = collect_search(QUERY, resolve=lambda q: [])
        events = decode(out.events)
        self.assertIsInstance(events[-1], ErrorEvent)
        self.assertIn("No platforms", events[-1].error)

    def test_duplicate_searcher_names_run_once(self):
        a1 = FakeSearcher("A", batches=[[_job(1)]])
        a2 = FakeSearcher("A", batches=[[_job(2)]])
        out, events = run_search([a1, a2])
        self.assertEqual(a2.calls, 0)
        self.assertEqual(len([e for e in events if isinstance(e, PlatformCompleteEvent)]), 1)

    def test_finish_hook_receives_all_jobs(self):
        seen = []
        collect_search(
            QUERY,
            resolve=lambda q: [FakeSearcher("A", batches=[[_job(1)], [_job(2)]])],
            on_finish=lambda q, jobs: seen.append((q.query, len(jobs))),
        )
        self.assertEqual(seen, [("backend engineer", 2)])

    def test_finish_hook_failure_does_not_change_outcome(self):
        def hook(q, jobs):
            raise RuntimeError("db down")

        with self.assertLogs("finder.core.aggregator", level="ERROR"):
            out = collect_search(QUERY, resolve=lambda q: [FakeSearcher("A")], on_finish=hook)
        self.assertTrue(out.ok)


class CancellationTests(unittest.TestCase):
    def _wait_for(self, predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    def test_cancel_stops_all_output_and_tasks(self):
        frames = []
        a = FakeSearcher("A", batches=[[_job(1)]], hang=True)
        b = FakeSearcher("B", hang=True)
        run = SearchRun(
            QUERY,
            resolve=lambda q: [a, b],
            emitter=EventEmitter(frames.append),
            options=RunOptions(platform_timeout=10),
        )
        t = threading.Thread(target=run.run)
        t.start()
        # start, two progress frames and A's batch; both platforms then hang
        self.assertTrue(self._wait_for(lambda: len(frames) == 4))
        self.assertTrue(any(f.startswith("event: jobs") for f in frames))

        written = len(frames)
        run.cancel()
        t.join(5)
        self.assertFalse(t.is_alive())

        self.assertEqual(len(frames), written)
        self.assertFalse(any(f.startswith(("event: complete", "event: error")) for f in frames))
        self.assertEqual(run.state, RunState.CANCELLED)
        self.assertTrue(run.wait_closed(5))
        self.assertEqual(run.pending_tasks(), 0)

    def test_cancel_blocks_a_frame_already_being_encoded(self):
        frames = []
        encoding, release = threading.Event(), threading.Event()

        def slow_encode(event):
            if event.type == "jobs":
                encoding.set()
                release.wait(5)
            return encode_event(event)

        run = SearchRun(
            QUERY,
            resolve=lambda q: [FakeSearcher("A", batches=[[_job(1)]], hang=True)],
            emitter=EventEmitter(frames.append),
            options=RunOptions(platform_timeout=10),
        )
        with mock.patch("finder.core.emitter.encode_event", side_effect=slow_encode):
            t = threading.Thread(target=run.run)
            t.start()
            self.assertTrue(encoding.wait(5))
            written = len(frames)
            run.cancel()
            release.set()
            t.join(5)
        self.assertFalse(t.is_alive())

        self.assertEqual(len(frames), written)
        self.assertFalse(any(f.startswith("event: jobs") for f in frames))
        self.assertTrue(run.emitter.closed)
        self.assertEqual(run.state, RunState.CANCELLED)
        self.assertTrue(run.wait_closed(5))

    def test_transport_failure_cancels_the_run(self):
        calls = []

        def write(frame):
            calls.append(frame)
            if len(calls) > 1:
                raise ConnectionResetError("peer closed")

        run = SearchRun(
            QUERY,
            resolve=lambda q: [FakeSearcher("A", hang=True)],
            emitter=EventEmitter(write),
            options=RunOptions(platform_timeout=10),
        )
        state = run.run()
        self.assertEqual(state, RunState.CANCELLED)
        self.assertTrue(run.cancelled)
        self.assertTrue(run.wait_closed(5))

    def test_run_only_once(self):
        run = SearchRun(QUERY, resolve=lambda q: [FakeSearcher("A")], emitter=EventEmitter(lambda f: None))
        run.run()
        with self.assertRaises(RuntimeError):
            run.run()


if __name__ == "__main__":
    unittest.main()
