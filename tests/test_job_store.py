"""Tests for the file-backed JobStore"""

import json
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from core.job_store import JobStore
from core.models.job import Job, JobStatus, MediaReference
from socials.types import DeliveryFailure, DeliverySuccess

BASE = datetime(2025, 10, 31, 20, 0, 0, tzinfo=timezone.utc)


def make_job(job_id, created_offset=0, run_offset=60, status=JobStatus.SCHEDULED, **kwargs):
    return Job(
        id=job_id,
        created_at=BASE + timedelta(seconds=created_offset),
        run_at=BASE + timedelta(seconds=run_offset),
        status=status,
        encrypted_payload=f"v1.sealed.{job_id}",
        **kwargs,
    )


class TestInit:
    def test_missing_file_is_created_empty(self, jobs_file):
        store = JobStore(jobs_file)
        store.init()

        assert json.loads(jobs_file.read_text()) == {"jobs": []}
        assert store.list() == []

    def test_corrupt_file_is_fatal(self, jobs_file):
        jobs_file.parent.mkdir(parents=True)
        jobs_file.write_text("{not json")

        with pytest.raises(ValueError):
            JobStore(jobs_file).init()

    def test_accepts_bare_list(self, jobs_file):
        jobs_file.parent.mkdir(parents=True)
        jobs_file.write_text(json.dumps([make_job("a").to_dict()]))

        store = JobStore(jobs_file)
        store.init()

        assert [job.id for job in store.list()] == ["a"]


class TestReads:
    def test_list_orders_by_creation(self, job_store):
        job_store.create(make_job("late", created_offset=10))
        job_store.create(make_job("early", created_offset=0))

        assert [job.id for job in job_store.list()] == ["early", "late"]

    def test_get_unknown_is_none(self, job_store):
        assert job_store.get("nope") is None

    def test_list_due_filters_and_orders(self, job_store):
        job_store.create(make_job("second", run_offset=30))
        job_store.create(make_job("first", run_offset=10))
        job_store.create(make_job("future", run_offset=120))
        job_store.create(make_job("cancelled", run_offset=5, status=JobStatus.CANCELLED))
        job_store.create(make_job("running", run_offset=5, status=JobStatus.RUNNING))

        due = job_store.list_due(BASE + timedelta(seconds=60))

        assert [job.id for job in due] == ["first", "second"]

    def test_list_due_is_inclusive(self, job_store):
        job_store.create(make_job("edge", run_offset=60))

        assert [job.id for job in job_store.list_due(BASE + timedelta(seconds=60))] == ["edge"]
        assert job_store.list_due(BASE + timedelta(seconds=59)) == []


class TestWrites:
    def test_create_flushes(self, job_store, jobs_file):
        job_store.create(make_job("a"))

        on_disk = json.loads(jobs_file.read_text())
        assert [job["id"] for job in on_disk["jobs"]] == ["a"]
        assert on_disk["jobs"][0]["run_at"] == "2025-10-31T20:01:00Z"

    def test_duplicate_id_rejected(self, job_store):
        job_store.create(make_job("a"))

        with pytest.raises(ValueError):
            job_store.create(make_job("a"))

    def test_update_returns_new_record(self, job_store):
        job_store.create(make_job("a"))

        updated = job_store.update("a", lambda job: replace(job, status=JobStatus.RUNNING, attempt_count=1))

        assert updated.status == JobStatus.RUNNING
        assert job_store.get("a").attempt_count == 1

    def test_update_unknown_returns_none(self, job_store):
        assert job_store.update("nope", lambda job: job) is None

    def test_failing_mutation_changes_nothing(self, job_store, jobs_file):
        job_store.create(make_job("a"))
        before = jobs_file.read_text()

        def explode(job):
            raise RuntimeError("no")

        with pytest.raises(RuntimeError):
            job_store.update("a", explode)

        assert jobs_file.read_text() == before
        assert job_store.get("a").status == JobStatus.SCHEDULED

    def test_no_temp_files_left_behind(self, job_store, jobs_file):
        job_store.create(make_job("a"))
        job_store.update("a", lambda job: replace(job, status=JobStatus.CANCELLED))

        assert sorted(p.name for p in jobs_file.parent.iterdir()) == ["jobs.json", "jobs.json.lock"]


class TestConcurrentWriters:
    def test_no_lost_updates(self, job_store):
        job_store.create(make_job("counter"))

        def bump():
            for _ in range(25):
                job_store.update("counter", lambda job: replace(job, attempt_count=job.attempt_count + 1))

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert job_store.get("counter").attempt_count == 100


class TestRestart:
    def test_reload_preserves_fields(self, job_store, jobs_file):
        media = [MediaReference(path="/tmp/m/1-a.jpg", segment_index=1, file_name="a.jpg", mime_type="image/jpeg", alt_text="alt")]
        job_store.create(make_job("a", media=media))
        job_store.create(make_job("b", created_offset=1))
        job_store.update(
            "b",
            lambda job: replace(
                job,
                status=JobStatus.PARTIAL,
                attempt_count=1,
                completed_at=BASE + timedelta(minutes=2),
                deliveries={
                    "x": DeliverySuccess(platform="x", external_id="123", url="https://x.com/i/status/123"),
                    "mastodon": DeliveryFailure(platform="mastodon", error_message="HTTP 500"),
                },
            ),
        )
        before = job_store.list()

        reloaded = JobStore(jobs_file)
        reloaded.init()

        assert reloaded.list() == before


class TestSharedFile:
    """Two stores over one file, as the `run` daemon and a one-shot command"""

    @pytest.fixture
    def other_store(self, job_store, jobs_file):
        store = JobStore(jobs_file)
        store.init()
        return store

    def test_reads_see_jobs_created_elsewhere(self, job_store, other_store):
        other_store.create(make_job("from-cli"))

        assert job_store.get("from-cli") is not None
        assert [job.id for job in job_store.list_due(BASE + timedelta(hours=1))] == ["from-cli"]

    def test_writes_do_not_drop_jobs_created_elsewhere(self, job_store, other_store, jobs_file):
        job_store.create(make_job("daemon"))
        other_store.create(make_job("from-cli", created_offset=1))

        job_store.update("daemon", lambda job: replace(job, status=JobStatus.RUNNING))

        on_disk = [record["id"] for record in json.loads(jobs_file.read_text())["jobs"]]
        assert on_disk == ["daemon", "from-cli"]

    def test_update_sees_change_made_elsewhere(self, job_store, other_store):
        job_store.create(make_job("a"))
        other_store.update("a", lambda job: replace(job, status=JobStatus.CANCELLED))

        seen = []
        job_store.update("a", lambda job: seen.append(job.status) or job)

        assert seen == [JobStatus.CANCELLED]
        assert job_store.list_due(BASE + timedelta(hours=1)) == []

    def test_duplicate_id_detected_across_stores(self, job_store, other_store):
        other_store.create(make_job("a"))

        with pytest.raises(ValueError):
            job_store.create(make_job("a"))
