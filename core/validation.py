"""
Pre-publish content checks.

Every rule runs before any platform is touched. A violation raises
``ValidationError`` with a rule-specific problem type; failing to *fetch*
Mastodon limits is an upstream problem and surfaces as ``UpstreamError``
from the capability cache untouched.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from core.errors import ValidationError
from core.models.request import PublishRequest
from socials.base import Segment
from socials.capabilities import CapabilityCache
from socials.platforms import (
    BLUESKY_MAX_CHARACTERS,
    BLUESKY_MAX_IMAGES,
    BLUESKY_MAX_VIDEOS,
    BLUESKY_VIDEO_MIME_TYPE,
    X_MAX_CHARACTERS,
    classify_media_type,
    count_code_points,
)

logger = logging.getLogger(__name__)


def _bluesky_media_error(detail: str) -> ValidationError:
    return ValidationError(detail, problem_type="bluesky-media-invalid", title="Invalid Bluesky media")


def check_segments(segments: Sequence[Segment]) -> None:
    if not segments:
        raise ValidationError("At least one thread segment is required")
    for index, segment in enumerate(segments):
        if not segment.text.strip():
            raise ValidationError(f"Thread segment {index + 1} text must not be empty")


def check_x(segments: Sequence[Segment]) -> None:
    for index, segment in enumerate(segments):
        length = count_code_points(segment.text)
        if length > X_MAX_CHARACTERS:
            raise ValidationError(
                f"Thread segment {index + 1} has {length} characters. "
                f"X allows up to {X_MAX_CHARACTERS} for non-premium accounts.",
                problem_type="x-length-exceeded",
                title="X character limit exceeded",
            )


def check_bluesky(segments: Sequence[Segment]) -> None:
    for index, segment in enumerate(segments):
        length = count_code_points(segment.text)
        if length > BLUESKY_MAX_CHARACTERS:
            raise ValidationError(
                f"Thread segment {index + 1} has {length} characters. "
                f"Bluesky allows up to {BLUESKY_MAX_CHARACTERS}.",
                problem_type="bluesky-length-exceeded",
                title="Bluesky character limit exceeded",
            )

    for index, segment in enumerate(segments):
        kinds = [classify_media_type(item.mime_type) for item in segment.media]
        images = kinds.count("image")
        videos = [item for item, kind in zip(segment.media, kinds) if kind == "video"]

        if "other" in kinds:
            raise _bluesky_media_error(f"Thread segment {index + 1} has unsupported media MIME type(s) for Bluesky")
        if images and videos:
            raise _bluesky_media_error(
                f"Thread segment {index + 1} mixes images and video. "
                f"Bluesky supports either 1 video or 1-{BLUESKY_MAX_IMAGES} images per post."
            )
        if images > BLUESKY_MAX_IMAGES:
            raise _bluesky_media_error(
                f"Thread segment {index + 1} has {images} images. Bluesky allows up to {BLUESKY_MAX_IMAGES}."
            )
        if len(videos) > BLUESKY_MAX_VIDEOS:
            raise _bluesky_media_error(
                f"Thread segment {index + 1} has {len(videos)} videos. Bluesky allows only {BLUESKY_MAX_VIDEOS}."
            )
        if videos and videos[0].mime_type.lower() != BLUESKY_VIDEO_MIME_TYPE:
            raise _bluesky_media_error(
                f"Thread segment {index + 1} has a {videos[0].mime_type} video. "
                f"Bluesky video upload requires {BLUESKY_VIDEO_MIME_TYPE}."
            )


class Validator:
    """
    Stateless rule checker. The only dependency is the Mastodon capability
    cache, injected so tests can hand in a fake.
    """

    def __init__(self, capabilities: Optional[CapabilityCache] = None) -> None:
        self.capabilities = capabilities or CapabilityCache()

    def validate(self, request: PublishRequest) -> None:
        """Raise on the first rule violation; return None when the request is publishable."""
        segments = request.segments
        targets = request.targets

        check_segments(segments)

        if targets.x is not None:
            check_x(segments)

        if targets.bluesky is not None:
            check_bluesky(segments)

        if targets.mastodon is not None:
            self.check_mastodon(segments, targets.mastodon.instance_url, targets.mastodon.access_token)

        logger.debug("Validated %d segment(s) for %s", len(segments), targets.platforms)

    def check_mastodon(self, segments: Sequence[Segment], instance_url: str, access_token: str) -> None:
        limits = self.capabilities.get(instance_url, access_token)

        for index, segment in enumerate(segments):
            length = count_code_points(segment.text)
            if length > limits.max_characters:
                raise ValidationError(
                    f"Thread segment {index + 1} has {length} characters. "
                    f"Instance {limits.instance_url} currently allows {limits.max_characters}.",
                    problem_type="mastodon-length-exceeded",
                    title="Mastodon character limit exceeded",
                )
            if len(segment.media) > limits.max_media_attachments:
                raise ValidationError(
                    f"Thread segment {index + 1} has {len(segment.media)} media files. "
                    f"Instance {limits.instance_url} currently allows {limits.max_media_attachments}.",
                    problem_type="mastodon-media-exceeded",
                    title="Mastodon media limit exceeded",
                )
