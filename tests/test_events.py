import json
import unittest
from datetime import datetime

from finder.core.emitter import EventEmitter
from finder.core.events import (
    CompleteEvent,
    ErrorEvent,
    JobsEvent,
    PlatformCompleteEvent,
    ProgressEvent,
    SseDecoder,
    StartEvent,
    encode_event,
    iter_messages,
    parse_event,
)
from finder.core.normalize import JobPosting


class EncodeEventTests(unittest.TestCase):
    def test_frame_layout_and_camel_case_payload(self):
        frame = encode_event(PlatformCompleteEvent(platform="lever.co", job_count=3, total_jobs=7))
        self.assertEqual(
            frame,
            'event: platform-complete\ndata: {"platform":"lever.co","jobCount":3,"totalJobs":7}\n\n',
        )

    def test_start_payload_carries_run_metadata(self):
        frame = encode_event(StartEvent(query="backend", site="all", location="remote"))
        data = json.loads(frame.split("data: ", 1)[1])
        self.assertEqual(data, {"message": "Search started", "query": "backend", "site": "all", "location": "remote"})

    def test_jobs_event_round_trip(self):
        job = JobPosting(
            title="Data Engineer",
            company="Initech",
            url="https://jobs.lever.co/initech/abc",
            platform="Lever",
            posted_at=datetime(2026, 10, 1),
            raw={"snippet": "not sent"},
        )
        frame = encode_event(JobsEvent(platform="lever.co", jobs=[job], jobs_from_platform=1, total_jobs_so_far=1))
        self.assertIn('"postedAt":"2026-10-01T00:00:00"', frame)
        self.assertNotIn("raw", frame)

        (msg,) = list(iter_messages(frame.split("\n")))
        event = parse_event(msg.event, msg.data)
        self.assertIsInstance(event, JobsEvent)
        self.assertEqual(event.jobs[0].title, "Data Engineer")
        self.assertEqual(event.total_jobs_so_far, 1)

    def test_terminal_flags(self):
        self.assertTrue(CompleteEvent(total_jobs=0).terminal)
        self.assertTrue(ErrorEvent(error="x").terminal)
        self.assertFalse(ProgressEvent(platform="a", message="m").terminal)


class ParseEventTests(unittest.TestCase):
    def test_typed_by_event_name(self):
        self.assertIsInstance(parse_event("complete", '{"totalJobs": 4}'), CompleteEvent)
        self.assertEqual(parse_event("error", '{"error": "boom"}').error, "boom")
        self.assertEqual(parse_event("start", "").message, "Search started")

    def test_malformed_json(self):
        with self.assertRaises(ValueError):
            parse_event("progress", "{not json")

    def test_unknown_event_or_wrong_shape(self):
        with self.assertRaises(ValueError):
            parse_event("heartbeat", "{}")
        with self.assertRaises(ValueError):
            parse_event("complete", "[1, 2]")
        with self.assertRaises(ValueError):
            parse_event("complete", '{"totalJobs": "many"}')


class SseDecoderTests(unittest.TestCase):
    def test_comments_multiline_data_and_default_name(self):
        lines = [": keep-alive", "event: progress", "data: {\"platform\":", "data: \"a\"}", "", "data: hi", ""]
        msgs = list(iter_messages(lines))
        self.assertEqual(len(msgs), 2)
        self.assertEqual(msgs[0].event, "progress")
        self.assertEqual(msgs[0].data, '{"platform":\n"a"}')
        self.assertEqual(msgs[1].event, "message")

    def test_blank_lines_without_fields_dispatch_nothing(self):
        d = SseDecoder()
        self.assertIsNone(d.feed(""))
        self.assertIsNone(d.feed("\r\n"))


class EventEmitterTests(unittest.TestCase):
    def test_nothing_is_written_after_terminal(self):
        out = []
        em = EventEmitter(out.append)
        self.assertTrue(em.emit(StartEvent()))
        self.assertTrue(em.emit(CompleteEvent(total_jobs=0)))
        self.assertFalse(em.emit(ProgressEvent(platform="a", message="late")))
        self.assertFalse(em.emit(ErrorEvent(error="late")))
        self.assertEqual(len(out), 2)
        self.assertTrue(em.closed)
        self.assertIsInstance(em.terminal_event, CompleteEvent)

    def test_write_failure_closes_and_reports(self):
        seen = []

        def broken(_frame):
            raise BrokenPipeError("client went away")

        em = EventEmitter(broken, on_transport_error=seen.append)
        self.assertFalse(em.emit(StartEvent()))
        self.assertTrue(em.closed)
        self.assertEqual(len(seen), 1)
        self.assertIn("client went away", str(seen[0]))
        self.assertFalse(em.emit(StartEvent()))
        self.assertEqual(len(seen), 1)


if __name__ == "__main__":
    unittest.main()
