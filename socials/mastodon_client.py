from __future__ import annotations

import logging
import time
from typing import Optional

import requests

from socials.types import PostRef

from .base import MediaItem, Segment, SocialClient, ThreadPublisher
from .targets import MastodonTarget

logger = logging.getLogger(__name__)

USER_AGENT = "crosspost/1.0"


class MastodonError(RuntimeError):
    """Raised when the instance rejects an upload or a status."""


class MastodonClient(SocialClient):
    """
    Mastodon client built on plain requests.

    - Media upload via api/v2/media (alt text sent as `description`),
      then polled until the instance reports it processed.
    - Statuses via api/v1/statuses, threaded with `in_reply_to_id`.
    """

    platform = "mastodon"

    def __init__(self, config: MastodonTarget, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.base_url = config.instance_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.config.access_token}",
                "User-Agent": USER_AGENT,
            }
        )

    # ---- internal helpers -------------------------------------------------

    def _wait_for_media_ready(
        self,
        media_id: str,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> None:
        """Poll Mastodon until media has finished processing, raise on error or timeout."""
        status_url = f"{self.base_url}/api/v1/media/{media_id}"
        deadline = time.monotonic() + timeout

        logger.info("Mastodon: waiting for media %s to finish processing", media_id)

        while time.monotonic() < deadline:
            resp = self.session.get(status_url, timeout=10)

            # 206 Partial Content = still processing
            if resp.status_code == 206:
                time.sleep(poll_interval)
                continue

            if resp.status_code >= 300:
                raise MastodonError(f"Media status check for {media_id} failed: HTTP {resp.status_code}")

            js = resp.json()
            if js.get("url") or js.get("preview_url"):
                logger.info("Mastodon: media %s reported ready", media_id)
                return

            time.sleep(poll_interval)

        raise MastodonError(f"Media {media_id} not processed after {timeout:.0f}s")

    def _upload_media(self, item: MediaItem) -> str:
        """Upload a single attachment and return its media id once processed."""
        url = f"{self.base_url}/api/v2/media"
        files = {"file": (item.file_name, item.data, item.mime_type or "application/octet-stream")}
        data = {"description": item.alt_text} if item.alt_text else None

        resp = self.session.post(url, files=files, data=data, timeout=120)
        if resp.status_code >= 300:
            raise MastodonError(f"Media upload for {item.file_name} failed: HTTP {resp.status_code} {resp.text[:200]}")

        js = resp.json()
        media_id = js.get("id")
        if not media_id:
            raise MastodonError(f"Media upload for {item.file_name} returned no id")
        media_id = str(media_id)

        # 202 Accepted = uploaded but still processing asynchronously
        if resp.status_code == 202 or not js.get("url"):
            self._wait_for_media_ready(media_id)

        logger.info("Mastodon: uploaded media %s for %s", media_id, item.file_name)
        return media_id

    # ---- public API -------------------------------------------------------

    def post(
        self,
        segment: Segment,
        reply_to_ref: Optional[PostRef] = None,
        root_ref: Optional[PostRef] = None,
    ) -> PostRef:
        media_ids = [self._upload_media(item) for item in segment.media]

        data: dict[str, object] = {"status": segment.text}
        if self.config.visibility:
            data["visibility"] = self.config.visibility
        if reply_to_ref and reply_to_ref.id:
            data["in_reply_to_id"] = reply_to_ref.id
        if media_ids:
            # requests will encode list values correctly for media_ids[]
            data["media_ids[]"] = media_ids

        resp = self.session.post(f"{self.base_url}/api/v1/statuses", data=data, timeout=30)
        if resp.status_code >= 300:
            raise MastodonError(f"Status post failed: HTTP {resp.status_code} {resp.text[:200]}")

        js = resp.json()
        status_id = js.get("id")
        if not status_id:
            raise MastodonError("Mastodon post succeeded but no status id was returned")
        status_id = str(status_id)

        return PostRef(
            platform="mastodon",
            id=status_id,
            uri=js.get("url") or f"{self.base_url}/web/statuses/{status_id}",
            raw={"id": status_id, "url": js.get("url")},
        )


def mastodon_publisher() -> ThreadPublisher[MastodonTarget]:
    return ThreadPublisher("mastodon", MastodonClient)
