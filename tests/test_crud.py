import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from finder.core.normalize import JobPosting
from finder.db.crud import cleanup_expired, list_history, query_jobs, record_search, store_jobs
from finder.db.models import Base, JobRecord


def _job(n, title="Backend Engineer"):
    return JobPosting(
        title=title,
        company="Acme",
        url=f"https://boards.greenhouse.io/acme/jobs/{n}",
        platform="Greenhouse",
        tags=["Python", "Remote"],
    )


class CrudTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine("sqlite:///:memory:", future=True)
        Base.metadata.create_all(engine)
        self.Session = sessionmaker(bind=engine)

    def test_store_jobs_upserts_by_url(self):
        with self.Session() as session:
            self.assertEqual(store_jobs(session, [_job(1), _job(2), _job(1, title="Dup in batch")]), 3)
            store_jobs(session, [_job(1, title="Senior Backend Engineer")])

            rows = session.query(JobRecord).order_by(JobRecord.url).all()
            self.assertEqual(len(rows), 2)
            self.assertEqual(rows[0].title, "Senior Backend Engineer")
            self.assertEqual(rows[0].tags, "Python,Remote")
            self.assertEqual(len(query_jobs(session, limit=1)), 1)

    def test_cleanup_expired_removes_only_old_rows(self):
        now = datetime.now(timezone.utc)
        with self.Session() as session:
            session.add_all([
                JobRecord(url="https://x.io/jobs/old", title="Old", company="A", platform="Lever",
                          scraped_at=now - timedelta(hours=30)),
                JobRecord(url="https://x.io/jobs/new", title="New", company="A", platform="Lever",
                          scraped_at=now - timedelta(hours=2)),
            ])
            session.commit()

            self.assertEqual(cleanup_expired(session, 24, now=now), 1)
            self.assertEqual([r.title for r in session.query(JobRecord).all()], ["New"])
            self.assertEqual(cleanup_expired(session, 24, now=now), 0)

        with self.Session() as session:
            with self.assertRaises(ValueError):
                cleanup_expired(session, 0)

    def test_history_is_scoped_ordered_and_limited(self):
        with self.Session() as session:
            for n in range(3):
                record_search(session, f"query {n}", n, platform="all", user_id="alice")
            record_search(session, "anon query", 5)

            alice = list_history(session, "alice", limit=2)
            self.assertEqual([r.query for r in alice], ["query 2", "query 1"])
            self.assertEqual(alice[0].result_count, 2)

            anon = list_history(session, None)
            self.assertEqual([r.query for r in anon], ["anon query"])
            self.assertEqual(list_history(session, "bob"), [])


if __name__ == "__main__":
    unittest.main()
