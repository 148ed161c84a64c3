"""
Deferred publishing.

``Scheduler`` accepts jobs (sealing their payload, parking media on disk),
and runs a background poll that pushes due jobs through the dispatcher one
at a time. Ticks never overlap: a tick that fires while the previous batch
is still running does nothing.

Lifecycle per job:
    scheduled -> running -> succeeded | partial | failed
    scheduled -> cancelled
"""

from __future__ import annotations

import logging
import re
import shutil
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from core.crypto import seal, unseal
from core.errors import Conflict, InvalidSchedule, NotFound
from core.job_store import JobStore
from core.models.job import Job, JobStatus, JobSummary, MediaReference, parse_timestamp
from core.models.request import PublishRequest
from socials.base import MediaItem, Segment
from socials.publisher import Dispatcher, error_message
from socials.targets import Targets
from utils.others import utc_now

logger = logging.getLogger(__name__)

DEFAULT_POLL_SECONDS = 5.0
MEDIA_DIR_NAME = "scheduled-media"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def safe_file_name(file_name: str, counter: int) -> str:
    """`<counter>-<sanitized name>`, with a synthesized name when nothing survives."""
    safe = _UNSAFE_FILENAME_CHARS.sub("_", file_name or "")
    return f"{counter}-{safe or f'media-{counter}'}"


class _AlreadyClaimed(Exception):
    """The job left `scheduled` between list_due and the claim."""


class Scheduler:
    """
    Owns the job store lifecycle and the background poll thread.

    Args:
        store: The job store. Other processes may share its file.
        dispatcher: Fan-out used when a job comes due.
        encryption_key: 32-byte key for the sealed payloads.
        data_dir: Root for per-job media directories.
        poll_seconds: Interval between ticks.
        monitor: Optional status monitor; gets per-status counts after each tick.
        clock: Returns the current aware UTC datetime (faked in tests).
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: Dispatcher,
        encryption_key: bytes,
        data_dir: Union[str, Path],
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        monitor: Optional[Any] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.encryption_key = encryption_key
        self.media_root = Path(data_dir) / MEDIA_DIR_NAME
        self.poll_seconds = poll_seconds
        self.monitor = monitor
        self.clock = clock

        self._tick_guard = threading.Lock()  # single permit, never waited on
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ================================================================
    # LIFECYCLE
    # ================================================================

    def load(self) -> None:
        """Load the job store without starting the poll (read/cancel-only use)."""
        self.store.init()
        self.media_root.mkdir(parents=True, exist_ok=True)

    def start(self, background: bool = True) -> None:
        """Load the store, run one tick right away, then keep polling."""
        self.load()
        self._stop_event.clear()

        logger.info("[SCHEDULER] Started (poll=%ss, media=%s)", self.poll_seconds, self.media_root)
        self.tick()

        if background:
            self._thread = threading.Thread(target=self._run, name="scheduler", daemon=True)
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("[SCHEDULER] Stopped")

    def _run(self) -> None:
        while not self._stop_event.wait(self.poll_seconds):
            self.tick()

    # ================================================================
    # PUBLIC OPERATIONS
    # ================================================================

    def schedule(self, run_at: Union[str, datetime], request: PublishRequest) -> JobSummary:
        run_at_dt = self._parse_run_at(run_at)
        now = self.clock()
        if run_at_dt <= now:
            raise InvalidSchedule("schedule_at must be in the future")

        job_id = str(uuid.uuid4())
        media = self._persist_media(job_id, request.segments)

        payload = {
            "targets": request.targets.to_dict(),
            "segments": [{"text": segment.text} for segment in request.segments],
            "client_request_id": request.client_request_id,
        }

        job = Job(
            id=job_id,
            created_at=now,
            run_at=run_at_dt,
            status=JobStatus.SCHEDULED,
            encrypted_payload=seal(payload, self.encryption_key),
            media=media,
            attempt_count=0,
        )
        try:
            self.store.create(job)
        except Exception:
            self._cleanup_media(job_id)
            raise

        logger.info(
            "[SCHEDULER] Scheduled job %s for %s (%d segment(s), %d media, targets=%s)",
            job_id,
            job.run_at.isoformat(),
            len(request.segments),
            len(media),
            request.targets.platforms,
        )
        return job.summary()

    def list_jobs(self) -> List[JobSummary]:
        return [job.summary() for job in self.store.list()]

    def get_job(self, job_id: str) -> JobSummary:
        job = self.store.get(job_id)
        if job is None:
            raise NotFound(f"No job exists with id {job_id}")
        return job.summary()

    def cancel(self, job_id: str) -> JobSummary:
        def mutate(current: Job) -> Job:
            # Checked under the store's writer turn, so a tick cannot claim it in between
            if current.status != JobStatus.SCHEDULED:
                raise Conflict(f"Job {job_id} is {current.status.value} and can no longer be cancelled")
            return replace(current, status=JobStatus.CANCELLED, completed_at=self.clock())

        cancelled = self.store.update(job_id, mutate)
        if cancelled is None:
            raise NotFound(f"No job exists with id {job_id}")

        self._cleanup_media(job_id)
        logger.info("[SCHEDULER] Cancelled job %s", job_id)
        return cancelled.summary()

    def get_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in self.store.list():
            counts[job.status.value] += 1
        return counts

    # ================================================================
    # POLLING
    # ================================================================

    def tick(self) -> bool:
        """
        Run every due job, sequentially, in run_at order.

        Returns False without doing anything if another tick is still busy.
        """
        if not self._tick_guard.acquire(blocking=False):
            logger.debug("[SCHEDULER] Previous tick still running; skipping")
            return False

        try:
            due = self.store.list_due(self.clock())
            if due:
                logger.info("[SCHEDULER] Found %d job(s) due", len(due))
            for job in due:
                try:
                    self.process_job(job)
                except Exception:
                    logger.exception("[SCHEDULER] Unexpected error processing job %s", job.id)
        except Exception:
            logger.exception("[SCHEDULER] Tick failed")
        finally:
            self._tick_guard.release()

        self._report_counts()
        return True

    def process_job(self, job: Job) -> Optional[Job]:
        """
        Claim, decrypt, rehydrate and dispatch one job, then record the result.

        Returns the final job record, or None if the job was no longer
        scheduled when the claim was attempted.
        """

        def claim(current: Job) -> Job:
            if current.status != JobStatus.SCHEDULED:
                raise _AlreadyClaimed()
            return replace(current, status=JobStatus.RUNNING, attempt_count=current.attempt_count + 1)

        try:
            claimed = self.store.update(job.id, claim)
        except _AlreadyClaimed:
            logger.info("[SCHEDULER] Job %s is no longer scheduled; skipping", job.id)
            return None
        if claimed is None:
            logger.warning("[SCHEDULER] Job %s disappeared before it could run", job.id)
            return None

        logger.info("[SCHEDULER] Running job %s (attempt %d)", job.id, claimed.attempt_count)

        try:
            request = self._rehydrate(claimed)
            outcome = self.dispatcher.dispatch(request)
        except Exception as e:
            message = error_message(e)
            logger.warning("[SCHEDULER] Job %s failed: %s", job.id, message)
            final = self.store.update(
                job.id,
                lambda current: replace(
                    current,
                    status=JobStatus.FAILED,
                    completed_at=self.clock(),
                    last_error=message,
                ),
            )
            self._cleanup_media(job.id)
            return final

        status = JobStatus.SUCCEEDED if outcome.overall == "success" else JobStatus.PARTIAL
        final = self.store.update(
            job.id,
            lambda current: replace(
                current,
                status=status,
                completed_at=self.clock(),
                deliveries=outcome.deliveries,
                last_error=None,
            ),
        )
        logger.info("[SCHEDULER] Job %s finished: %s", job.id, status.value)
        self._cleanup_media(job.id)
        return final

    # ================================================================
    # INTERNALS
    # ================================================================

    @staticmethod
    def _parse_run_at(run_at: Union[str, datetime]) -> datetime:
        if isinstance(run_at, datetime):
            if run_at.tzinfo is None:
                raise InvalidSchedule("schedule_at must include a UTC offset")
            return run_at
        try:
            return parse_timestamp(run_at)
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidSchedule("schedule_at must be a valid ISO 8601 timestamp") from e

    def _rehydrate(self, job: Job) -> PublishRequest:
        payload = unseal(job.encrypted_payload, self.encryption_key)

        segments = [Segment(text=item["text"]) for item in payload["segments"]]
        for ref in job.media:
            if not 0 <= ref.segment_index < len(segments):
                logger.debug("Dropping media %s with out-of-range segment %d", ref.file_name, ref.segment_index)
                continue
            segments[ref.segment_index].media.append(
                MediaItem(
                    data=Path(ref.path).read_bytes(),
                    file_name=ref.file_name,
                    mime_type=ref.mime_type,
                    alt_text=ref.alt_text,
                )
            )

        return PublishRequest(
            targets=Targets.from_dict(payload["targets"]),
            segments=segments,
            client_request_id=payload.get("client_request_id"),
        )

    def _job_media_dir(self, job_id: str) -> Path:
        return self.media_root / job_id

    def _persist_media(self, job_id: str, segments: List[Segment]) -> List[MediaReference]:
        if not any(segment.media for segment in segments):
            return []

        folder = self._job_media_dir(job_id)
        folder.mkdir(parents=True, exist_ok=True)

        references: List[MediaReference] = []
        counter = 0
        try:
            for segment_index, segment in enumerate(segments):
                for item in segment.media:
                    counter += 1
                    path = folder / safe_file_name(item.file_name, counter)
                    path.write_bytes(item.data)
                    references.append(
                        MediaReference(
                            path=str(path),
                            segment_index=segment_index,
                            file_name=item.file_name,
                            mime_type=item.mime_type,
                            alt_text=item.alt_text,
                        )
                    )
        except OSError:
            self._cleanup_media(job_id)
            raise

        return references

    def _cleanup_media(self, job_id: str) -> None:
        folder = self._job_media_dir(job_id)
        try:
            shutil.rmtree(folder)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("[SCHEDULER] Could not remove media for job %s: %s", job_id, e)

    def _report_counts(self) -> None:
        mon = self.monitor
        if mon is None or not hasattr(mon, "update_scheduler"):
            return
        try:
            mon.update_scheduler(self.get_counts())
        except Exception as e:
            logger.warning("Monitor update failed: %s", e)
