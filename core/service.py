"""
Entry point for whatever wraps the core (CLI today, an HTTP layer later).

Validates a request once, then routes it: no ``schedule_at`` means publish
now, otherwise the scheduler takes it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Union

from core.job_store import JobStore
from core.models.job import JobSummary
from core.models.request import PublishRequest
from core.scheduler import Scheduler
from core.validation import Validator
from socials.capabilities import CapabilityCache
from socials.publisher import Dispatcher
from socials.types import DispatchOutcome

logger = logging.getLogger(__name__)


class CrosspostService:
    def __init__(self, validator: Validator, dispatcher: Dispatcher, scheduler: Scheduler) -> None:
        self.validator = validator
        self.dispatcher = dispatcher
        self.scheduler = scheduler

    @classmethod
    def from_settings(cls, settings, monitor=None) -> "CrosspostService":
        """Wire the default components from resolved ``Settings``."""
        validator = Validator(CapabilityCache(ttl_seconds=settings.capability_ttl_seconds))
        dispatcher = Dispatcher(validator, monitor=monitor, nosocial=settings.nosocial)
        scheduler = Scheduler(
            store=JobStore(settings.jobs_file),
            dispatcher=dispatcher,
            encryption_key=settings.encryption_key,
            data_dir=settings.data_dir,
            poll_seconds=settings.poll_seconds,
            monitor=monitor,
        )
        return cls(validator, dispatcher, scheduler)

    def submit(
        self,
        request: PublishRequest,
        schedule_at: Optional[Union[str, datetime]] = None,
    ) -> Union[DispatchOutcome, JobSummary]:
        """
        Validate, then publish immediately or schedule.

        Returns a DispatchOutcome for an immediate post, a JobSummary for a
        scheduled one. Errors from the core hierarchy propagate unchanged.
        """
        self.validator.validate(request)

        if schedule_at is None:
            logger.info("Publishing now to %s", request.targets.platforms)
            return self.dispatcher.dispatch(request)

        summary = self.scheduler.schedule(schedule_at, request)
        logger.info("Accepted job %s for %s", summary.id, summary.run_at.isoformat())
        return summary

    def status(self) -> Dict[str, int]:
        return self.scheduler.get_counts()
