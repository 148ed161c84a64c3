# socials/publisher.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
from uuid import uuid4

from core.errors import AllTargetsFailed
from core.models.request import PublishRequest
from core.validation import Validator
from utils.others import preview_text

from .base import Publisher, Segment
from .bluesky_client import bluesky_publisher
from .mastodon_client import mastodon_publisher
from .platforms import ALL_PLATFORMS
from .types import DeliveryFailure, DeliveryResult, DeliverySuccess, DispatchOutcome, PlatformName
from .x_client import x_publisher

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown publishing error"


def default_publishers() -> Dict[str, Publisher]:
    return {
        "x": x_publisher(),
        "bluesky": bluesky_publisher(),
        "mastodon": mastodon_publisher(),
    }


def error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or UNKNOWN_ERROR_MESSAGE


class Dispatcher:
    """
    Platform-agnostic fan-out.

    - dispatch(): validate again, publish to every requested target at once,
                  and fold the per-target results into one DispatchOutcome
    - a target that raises becomes a DeliveryFailure; the others carry on
    - zero successes is not an outcome, it raises AllTargetsFailed
    """

    def __init__(
        self,
        validator: Validator,
        publishers: Optional[Mapping[str, Publisher]] = None,
        monitor: Optional[Any] = None,  # optional status monitor
        nosocial: bool = False,
    ) -> None:
        self.validator = validator
        self.publishers: Dict[str, Publisher] = dict(publishers) if publishers is not None else default_publishers()
        self.monitor = monitor
        self.nosocial = nosocial

    def dispatch(self, request: PublishRequest) -> DispatchOutcome:
        self.validator.validate(request)

        requested = request.targets.requested()
        if self.nosocial:
            deliveries = self._nosocial_deliveries(request)
        else:
            deliveries = self._fan_out(request)

        # Stable ordering regardless of completion order
        ordered = {name: deliveries[name] for name in ALL_PLATFORMS if name in deliveries}
        successes = sum(1 for result in ordered.values() if result.ok)

        if not ordered or successes == 0:
            logger.error(
                "Dispatch failed on every target: %s",
                {name: result.error_message for name, result in ordered.items() if not result.ok},
            )
            self._record("failed", ordered)
            raise AllTargetsFailed(deliveries=ordered)

        overall = "success" if successes == len(ordered) else "partial"
        outcome = DispatchOutcome(
            overall=overall,
            posted_at=datetime.now(timezone.utc),
            deliveries=ordered,
            client_request_id=request.client_request_id,
        )
        logger.info(
            "Dispatch %s: %d/%d target(s) succeeded (requested=%s)",
            overall,
            successes,
            len(ordered),
            [name for name, _ in requested],
        )
        self._record(overall, ordered)
        return outcome

    # ---------- fan-out ----------
    def _fan_out(self, request: PublishRequest) -> Dict[str, DeliveryResult]:
        requested = request.targets.requested()
        deliveries: Dict[str, DeliveryResult] = {}
        if not requested:
            return deliveries

        # Results are joined on this thread only; workers never touch `deliveries`.
        with ThreadPoolExecutor(max_workers=len(requested), thread_name_prefix="dispatch") as executor:
            future_map = {
                executor.submit(self._run_target, name, credentials, request.segments): name
                for name, credentials in requested
            }
            for future in as_completed(future_map):
                name = future_map[future]
                deliveries[name] = future.result()

        return deliveries

    def _run_target(self, name: PlatformName, credentials: Any, segments: list[Segment]) -> DeliveryResult:
        publisher = self.publishers.get(name)
        if publisher is None:
            return DeliveryFailure(platform=name, error_message=f"No publisher configured for {name}")

        try:
            result = publisher.publish(credentials, segments)
            if not isinstance(result, DeliverySuccess):
                raise TypeError(f"{name} publisher returned {type(result).__name__}, not a DeliverySuccess")
            logger.info("%s: delivered %s", name, result.url or result.external_id)
        except Exception as e:
            logger.exception("Dispatcher: %s.publish(...) raised; recording a failure for this target.", name)
            return DeliveryFailure(platform=name, error_message=error_message(e))

        return result

    # ---------- NOSOCIAL ----------
    def _nosocial_deliveries(self, request: PublishRequest) -> Dict[str, DeliveryResult]:
        deliveries: Dict[str, DeliveryResult] = {}
        for name, _ in request.targets.requested():
            for index, segment in enumerate(request.segments):
                preview = preview_text(segment.text, limit=180)
                logger.info(
                    "[NOSOCIAL] (%s) Would post segment %d/%d → %s (%d media)",
                    name,
                    index + 1,
                    len(request.segments),
                    preview,
                    len(segment.media),
                )
                logger.debug("[NOSOCIAL-FULL] (%s)\n%s", name, segment.text)
            deliveries[name] = DeliverySuccess(platform=name, external_id=f"nosocial-{uuid4()}")
        return deliveries

    # ---------- monitor ----------
    def _record(self, overall: str, deliveries: Dict[str, DeliveryResult]) -> None:
        mon = self.monitor
        if mon is None or not hasattr(mon, "record_dispatch"):
            return
        try:
            mon.record_dispatch(overall, {name: result.ok for name, result in deliveries.items()})
        except Exception as e:
            logger.warning("Monitor record failed: %s", e)
