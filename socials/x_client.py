# socials/x_client.py
from __future__ import annotations

import io
import logging
from typing import List, Optional

import tweepy

from socials.types import PostRef

from .base import MediaItem, Segment, SocialClient, ThreadPublisher
from .platforms import classify_media_type
from .targets import XTarget

logger = logging.getLogger(__name__)


class XClient(SocialClient):
    """
    Minimal X (Twitter) client:

    - Uses v1.1 API for media upload (photos, GIFs, chunked MP4 video).
    - Uses v2 API (`Client.create_tweet`) for posting and replying.
    """

    platform = "x"

    def __init__(self, cfg: XTarget):
        self.cfg = cfg

        # v1.1 API for media upload
        auth = tweepy.OAuth1UserHandler(
            cfg.consumer_key,
            cfg.consumer_secret,
            cfg.access_token,
            cfg.access_token_secret,
        )
        self.api_v1 = tweepy.API(auth)

        # v2 client for tweeting
        self.client_v2 = tweepy.Client(
            consumer_key=cfg.consumer_key,
            consumer_secret=cfg.consumer_secret,
            access_token=cfg.access_token,
            access_token_secret=cfg.access_token_secret,
        )
        self._username: str | None = None

    @property
    def username(self) -> str | None:
        """Resolved lazily; only used to build nicer URLs."""
        if self._username is None:
            try:
                me = self.client_v2.get_me(user_auth=True).data
                self._username = me.username
            except Exception as exc:  # pragma: no cover
                logger.warning("XClient: failed to resolve username: %s", exc)
        return self._username

    def _upload_media(self, items: List[MediaItem]) -> List[str]:
        media_ids: List[str] = []
        for item in items:
            is_video = classify_media_type(item.mime_type) == "video"
            media = self.api_v1.media_upload(
                filename=item.file_name,
                file=io.BytesIO(item.data),
                chunked=is_video,
                media_category="tweet_video" if is_video else None,
            )
            # media_id_string works across Tweepy versions
            media_id = str(getattr(media, "media_id_string", None) or media.media_id)
            if not media_id:
                raise RuntimeError("X upload succeeded but no media_id was returned")

            if item.alt_text:
                self.api_v1.create_media_metadata(media_id=media_id, alt_text=item.alt_text)

            media_ids.append(media_id)
        return media_ids

    def post(
        self,
        segment: Segment,
        reply_to_ref: Optional[PostRef] = None,
        root_ref: Optional[PostRef] = None,
    ) -> PostRef:
        """
        Post a tweet with optional media, as a reply when `reply_to_ref` is set.
        Errors from tweepy propagate; the dispatcher records them per target.
        """
        media_ids = self._upload_media(segment.media) if segment.media else None

        kwargs: dict = {"text": segment.text, "user_auth": True}
        if media_ids:
            kwargs["media_ids"] = media_ids
        if reply_to_ref and reply_to_ref.id:
            kwargs["in_reply_to_tweet_id"] = reply_to_ref.id

        resp = self.client_v2.create_tweet(**kwargs)

        data = getattr(resp, "data", {}) or {}
        tweet_id = str(data.get("id") or "")
        if not tweet_id:
            raise RuntimeError("X post succeeded but no tweet id was returned")

        if self.username:
            url = f"https://x.com/{self.username}/status/{tweet_id}"
        else:
            url = f"https://x.com/i/status/{tweet_id}"

        return PostRef(platform="x", id=tweet_id, uri=url, raw=data)


def x_publisher() -> ThreadPublisher[XTarget]:
    return ThreadPublisher("x", XClient)
