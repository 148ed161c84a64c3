# socials/capabilities.py
"""
Time-bounded cache of live Mastodon posting limits.

Each instance publishes its limits under ``/api/v2/instance``. Validation
needs ``max_characters`` and ``max_media_attachments`` before anything is
posted, so lookups are cached per normalized instance URL for a fixed TTL.

No per-key locking: two cold lookups for the same instance may both fetch,
and the last one to finish wins. That is wasted work, not a correctness issue.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from core.errors import UpstreamInvalid, UpstreamUnreachable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60
TIMEOUT = 10.0

# Fallbacks when an instance omits a field (Mastodon's own defaults)
DEFAULT_MAX_CHARACTERS = 500
DEFAULT_MAX_MEDIA_ATTACHMENTS = 4
DEFAULT_CHARACTERS_RESERVED_PER_URL = 23


@dataclass
class MastodonLimits:
    instance_url: str
    max_characters: int
    max_media_attachments: int
    characters_reserved_per_url: int
    supported_mime_types: List[str] = field(default_factory=list)
    image_size_limit: int = 0
    video_size_limit: int = 0
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def normalize_instance_url(instance_url: str) -> str:
    """Strip a single trailing slash (and only one)."""
    return instance_url[:-1] if instance_url.endswith("/") else instance_url


def _to_int(value: Any, fallback: int) -> int:
    # bool is an int subclass; an instance saying `true` is not a limit.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    try:
        return int(value)
    except (OverflowError, ValueError):
        return fallback


class CapabilityCache:
    """
    Injectable TTL cache in front of the Mastodon instance endpoint.

    Args:
        ttl_seconds: How long a fetched entry is served without a network call.
        session: requests session (mocked in tests).
        clock: monotonic clock in seconds (faked in tests).
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.session = session or requests.Session()
        self.clock = clock
        self._entries: Dict[str, Tuple[float, MastodonLimits]] = {}
        self._lock = threading.Lock()  # guards the dict only, never held across a fetch

    def get(self, instance_url: str, access_token: Optional[str] = None) -> MastodonLimits:
        key = normalize_instance_url(instance_url)
        now = self.clock()

        with self._lock:
            entry = self._entries.get(key)
        if entry:
            expires_at, limits = entry
            if expires_at > now:
                logger.debug("Capability cache HIT for %s", key)
                return limits
            logger.debug("Capability cache STALE for %s", key)

        limits = self._fetch(key, access_token)
        with self._lock:
            self._entries[key] = (now + self.ttl_seconds, limits)
        return limits

    def invalidate(self, instance_url: Optional[str] = None) -> None:
        with self._lock:
            if instance_url is None:
                self._entries.clear()
            else:
                self._entries.pop(normalize_instance_url(instance_url), None)

    def _fetch(self, normalized: str, access_token: Optional[str]) -> MastodonLimits:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        url = f"{normalized}/api/v2/instance"
        logger.info("Fetching Mastodon instance limits from %s", url)

        try:
            resp = self.session.get(url, headers=headers, timeout=TIMEOUT)
        except requests.RequestException as e:
            raise UpstreamUnreachable(
                f"Could not reach Mastodon instance at {normalized}: {e}",
                problem_type="mastodon-instance-unreachable",
                title="Mastodon instance unavailable",
            ) from e

        if not 200 <= resp.status_code < 300:
            raise UpstreamInvalid(
                f"Instance {normalized} returned HTTP {resp.status_code}",
                problem_type="mastodon-instance-error",
                title="Mastodon instance error",
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamInvalid(
                f"Instance {normalized} returned a non-JSON body",
                problem_type="mastodon-instance-invalid",
                title="Mastodon instance configuration missing",
            ) from e

        configuration = payload.get("configuration") if isinstance(payload, dict) else None
        statuses = configuration.get("statuses") if isinstance(configuration, dict) else None
        if not isinstance(statuses, dict):
            raise UpstreamInvalid(
                f"Could not read posting limits from {normalized}",
                problem_type="mastodon-instance-invalid",
                title="Mastodon instance configuration missing",
            )

        media = configuration.get("media_attachments")
        if not isinstance(media, dict):
            media = {}
        mime_types = media.get("supported_mime_types")

        return MastodonLimits(
            instance_url=normalized,
            max_characters=_to_int(statuses.get("max_characters"), DEFAULT_MAX_CHARACTERS),
            max_media_attachments=_to_int(statuses.get("max_media_attachments"), DEFAULT_MAX_MEDIA_ATTACHMENTS),
            characters_reserved_per_url=_to_int(
                statuses.get("characters_reserved_per_url"), DEFAULT_CHARACTERS_RESERVED_PER_URL
            ),
            supported_mime_types=list(mime_types) if isinstance(mime_types, list) else [],
            image_size_limit=_to_int(media.get("image_size_limit"), 0),
            video_size_limit=_to_int(media.get("video_size_limit"), 0),
        )
