# socials/bluesky_client.py
# pylint: disable=wrong-import-position

from __future__ import annotations

import io
import logging
import warnings
from typing import Optional
from urllib.parse import quote

# Silence noisy Pydantic v2 + atproto_client schema warnings
from pydantic.warnings import UnsupportedFieldAttributeWarning

warnings.filterwarnings("ignore", category=UnsupportedFieldAttributeWarning)

from atproto import Client
from atproto import models as at_models
from PIL import Image

from socials.types import PostRef

from .base import Segment, SocialClient, ThreadPublisher
from .platforms import classify_media_type
from .targets import BlueskyTarget

logger = logging.getLogger(__name__)


def _strong_ref(ref: PostRef) -> at_models.ComAtprotoRepoStrongRef.Main:
    return at_models.ComAtprotoRepoStrongRef.Main(uri=ref.id, cid=ref.cid)


def build_post_url(did: str | None, uri: str) -> str | None:
    """
    at://did:plc:XXXX/app.bsky.feed.post/3m4abc -> https://bsky.app/profile/did:plc:XXXX/post/3m4abc
    """
    if not did:
        return None
    rkey = uri.rstrip("/").split("/")[-1]
    if not rkey:
        return None
    return f"https://bsky.app/profile/{quote(did, safe='')}/post/{quote(rkey, safe='')}"


class BlueskyClient(SocialClient):
    """
    Minimal Bluesky client:
      - Logs in against the target PDS with an app password.
      - Uploads images (1-4) or a single MP4 video as blobs.
      - Replies using a ReplyRef built from root + parent strong refs.
    """

    platform = "bluesky"

    def __init__(self, cfg: BlueskyTarget):
        self.cfg = cfg
        self.client = Client(cfg.pds_url or "https://bsky.social")
        self.client.login(cfg.identifier, cfg.app_password)

    @property
    def did(self) -> str | None:
        me = getattr(self.client, "me", None)
        return getattr(me, "did", None)

    # ---------------- Posting helpers ----------------

    def _build_embed(self, segment: Segment):
        """
        Build an embed for the segment's media.

        Validation already guaranteed either 1-4 images or exactly one video.
        """
        if not segment.media:
            return None

        images = [m for m in segment.media if classify_media_type(m.mime_type) == "image"]
        videos = [m for m in segment.media if classify_media_type(m.mime_type) == "video"]

        if images:
            embedded: list[at_models.AppBskyEmbedImages.Image] = []
            for item in images:
                uploaded = self.client.upload_blob(item.data)

                # Aspect ratio is optional; PIL may not understand every format.
                aspect = None
                try:
                    with Image.open(io.BytesIO(item.data)) as im:
                        width, height = im.size
                    aspect = at_models.AppBskyEmbedDefs.AspectRatio(width=width, height=height)
                except (OSError, ValueError) as e:
                    logger.debug("Bluesky: no aspect ratio for %s: %s", item.file_name, e)

                embedded.append(
                    at_models.AppBskyEmbedImages.Image(
                        image=uploaded.blob,
                        alt=item.alt_text or "",
                        aspect_ratio=aspect,
                    )
                )
            return at_models.AppBskyEmbedImages.Main(images=embedded)

        if len(videos) == 1:
            video = videos[0]
            uploaded = self.client.upload_blob(video.data)
            return at_models.AppBskyEmbedVideo.Main(video=uploaded.blob, alt=video.alt_text or None)

        return None

    def post(
        self,
        segment: Segment,
        reply_to_ref: Optional[PostRef] = None,
        root_ref: Optional[PostRef] = None,
    ) -> PostRef:
        embed = self._build_embed(segment)

        reply_to = None
        if reply_to_ref is not None:
            root = root_ref or reply_to_ref
            reply_to = at_models.AppBskyFeedPost.ReplyRef(
                root=_strong_ref(root),
                parent=_strong_ref(reply_to_ref),
            )

        resp = self.client.send_post(text=segment.text, embed=embed, reply_to=reply_to)

        return PostRef(
            platform="bluesky",
            id=resp.uri,
            cid=resp.cid,
            uri=build_post_url(self.did, resp.uri),
            raw={"uri": resp.uri, "cid": resp.cid},
        )


def bluesky_publisher() -> ThreadPublisher[BlueskyTarget]:
    return ThreadPublisher("bluesky", BlueskyClient)
