"""
File-backed job store.

The whole job set lives in memory and every mutation rewrites one JSON file.
Mutations run strictly one at a time, in arrival order: each writer takes a
ticket and waits for its turn, applies its change, flushes, then hands over.
The flush goes to a temp file that is ``os.replace``d over the real one, so a
reader of the file never sees a half-written state.

Several processes may open the same file (the ``run`` daemon plus one-shot
``post``/``cancel`` commands). Writers also hold an exclusive ``flock`` on a
sibling ``.lock`` file, and every operation re-reads the job file first when
another process has replaced it, so no process writes from a stale copy.

Usage:
    store = JobStore(Path("data/jobs.json"))
    store.init()
    store.create(job)
    store.update(job.id, lambda current: replace(current, status=JobStatus.RUNNING))
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from core.models.job import Job, JobStatus

logger = logging.getLogger(__name__)

FileStamp = Tuple[int, int, int]


def _stamp_of(stat: os.stat_result) -> FileStamp:
    # os.replace swaps the inode, so a rewrite shows up even within one mtime tick
    return (stat.st_ino, stat.st_mtime_ns, stat.st_size)


class JobStore:
    def __init__(self, file_path: Path) -> None:
        self.file_path = Path(file_path)
        self.lock_path = self.file_path.with_name(self.file_path.name + ".lock")
        self._jobs: Dict[str, Job] = {}
        self._stamp: Optional[FileStamp] = None  # file version _jobs was loaded from
        self._state_lock = threading.Lock()  # guards _jobs for readers
        self._turn = threading.Condition()
        self._next_ticket = 0
        self._now_serving = 0

    # ---------- lifecycle ----------

    def init(self) -> None:
        """
        Load the backing file. A missing file is created empty; anything else
        that prevents reading or parsing it is fatal.
        """
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        with self._exclusive():
            if not self.file_path.exists():
                logger.info("No job file at %s; creating an empty one.", self.file_path)
                self._flush()
                return
            self._reload()

        logger.info("Loaded %d job(s) from %s", len(self._jobs), self.file_path)

    # ---------- reads ----------

    def get(self, job_id: str) -> Optional[Job]:
        self._refresh()
        with self._state_lock:
            return self._jobs.get(job_id)

    def list(self) -> List[Job]:
        """All jobs, oldest first."""
        self._refresh()
        return sorted(self._snapshot(), key=lambda job: job.created_at)

    def list_due(self, as_of: datetime) -> List[Job]:
        """Scheduled jobs whose run time has arrived, earliest first."""
        self._refresh()
        due = [job for job in self._snapshot() if job.status == JobStatus.SCHEDULED and job.run_at <= as_of]
        return sorted(due, key=lambda job: job.run_at)

    # ---------- writes ----------

    def create(self, job: Job) -> None:
        with self._exclusive():
            self._reload()
            with self._state_lock:
                if job.id in self._jobs:
                    raise ValueError(f"Job {job.id} already exists")
                self._jobs[job.id] = job
            try:
                self._flush()
            except Exception:
                # keep memory and disk in agreement
                with self._state_lock:
                    self._jobs.pop(job.id, None)
                raise

    def update(self, job_id: str, mutate: Callable[[Job], Job]) -> Optional[Job]:
        """
        Apply `mutate` to the current record and persist the result.

        Returns the updated job, or None if the id is unknown. If `mutate`
        raises, nothing is changed and the exception propagates.
        """
        with self._exclusive():
            self._reload()
            with self._state_lock:
                current = self._jobs.get(job_id)
            if current is None:
                return None

            updated = mutate(current)
            with self._state_lock:
                self._jobs[job_id] = updated
            try:
                self._flush()
            except Exception:
                with self._state_lock:
                    self._jobs[job_id] = current
                raise
            return updated

    # ---------- internals ----------

    @contextmanager
    def _writer_turn(self) -> Iterator[None]:
        """FIFO mutual exclusion across threads of this process."""
        with self._turn:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._now_serving:
                self._turn.wait()
        try:
            yield
        finally:
            with self._turn:
                self._now_serving += 1
                self._turn.notify_all()

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        """Exclusive lock shared with other processes using the same job file."""
        with open(self.lock_path, "a", encoding="utf-8") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._writer_turn(), self._file_lock():
            yield

    def _refresh(self) -> None:
        """Pick up a rewrite made by another process, if there was one."""
        with self._writer_turn():
            self._reload()

    def _reload(self) -> None:
        """Re-read the file when it differs from the version in memory. Caller holds the writer turn."""
        try:
            with open(self.file_path, encoding="utf-8") as f:
                stamp = _stamp_of(os.fstat(f.fileno()))
                if stamp == self._stamp:
                    return
                content = f.read()
        except FileNotFoundError:
            return

        jobs = self._parse(content)
        with self._state_lock:
            self._jobs = {job.id: job for job in jobs}
            self._stamp = stamp
        logger.debug("Reloaded %d job(s) from %s", len(jobs), self.file_path)

    def _parse(self, content: str) -> List[Job]:
        parsed = json.loads(content)
        # Older files may hold the bare list.
        records = parsed.get("jobs", []) if isinstance(parsed, dict) else parsed
        if not isinstance(records, list):
            raise ValueError(f"Job file {self.file_path} does not contain a job list")
        return [Job.from_dict(record) for record in records]

    def _snapshot(self) -> List[Job]:
        with self._state_lock:
            return list(self._jobs.values())

    def _flush(self) -> None:
        jobs = sorted(self._snapshot(), key=lambda job: job.created_at)
        data = {"jobs": [job.to_dict() for job in jobs]}

        fd, tmp_name = tempfile.mkstemp(prefix=".jobs-", suffix=".tmp", dir=self.file_path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.file_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        # Only this process writes while the file lock is held
        self._stamp = _stamp_of(os.stat(self.file_path))
