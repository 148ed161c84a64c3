# socials/base.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Protocol, Sequence, TypeVar

from socials.types import DeliverySuccess, PostRef

logger = logging.getLogger(__name__)


@dataclass
class MediaItem:
    """One uploaded file. Bytes stay in memory; scheduled jobs park them on disk."""

    data: bytes
    file_name: str
    mime_type: str
    alt_text: Optional[str] = None

    def __repr__(self) -> str:
        return f"MediaItem(file_name={self.file_name!r}, mime_type={self.mime_type!r}, size={len(self.data)})"


@dataclass
class Segment:
    """
    A single unit of a thread.

    Segments are ordered: segment i+1 is posted as a reply to segment i
    (do NOT put platform IDs in here, the publisher threads them).
    """

    text: str
    media: List[MediaItem] = field(default_factory=list)


class SocialClient(Protocol):
    """
    All platform adapters (X, Bluesky, Mastodon) implement this.

    MUST:
      - Create the post on the target platform
      - Thread it under `reply_to_ref` if provided
      - Return a PostRef that uniquely identifies the created post
      - Raise on failure (the dispatcher turns exceptions into per-target failures)
    """

    platform: str

    def post(self, segment: Segment, reply_to_ref: Optional[PostRef] = None, root_ref: Optional[PostRef] = None) -> PostRef: ...


class Publisher(Protocol):
    """Turns (credentials, ordered segments) into a published reply chain."""

    platform: str

    def publish(self, credentials, segments: Sequence[Segment]) -> DeliverySuccess: ...


C = TypeVar("C")


class ThreadPublisher(Generic[C]):
    """
    Publisher built on top of a SocialClient factory.

    A fresh client is created per publish because credentials travel with the
    request, not with the process.
    """

    def __init__(self, platform: str, client_factory: Callable[[C], SocialClient]) -> None:
        self.platform = platform
        self.client_factory = client_factory

    def publish(self, credentials: C, segments: Sequence[Segment]) -> DeliverySuccess:
        client = self.client_factory(credentials)

        root: Optional[PostRef] = None
        parent: Optional[PostRef] = None
        posted: List[PostRef] = []

        for index, segment in enumerate(segments):
            ref = client.post(segment, reply_to_ref=parent, root_ref=root)
            logger.info("%s: posted segment %d/%d -> %s", self.platform, index + 1, len(segments), ref.id)
            if root is None:
                root = ref
            parent = ref
            posted.append(ref)

        if root is None:
            raise RuntimeError(f"{self.platform} thread publish failed: no posts were created")

        return DeliverySuccess(
            platform=self.platform,
            external_id=root.id,
            url=root.uri,
            raw={"root_id": root.id, "post_ids": [ref.id for ref in posted]},
        )
