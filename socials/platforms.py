# socials/platforms.py

"""
Centralized platform constants and small helpers shared by validation and the clients.

These are fixed platform rules. Mastodon limits are per instance and come from
``socials.capabilities`` at request time instead.
"""

from typing import List, Literal

# Order matters: dispatch and delivery maps follow it.
ALL_PLATFORMS: List[str] = ["x", "bluesky", "mastodon"]

X_MAX_CHARACTERS = 280  # non-premium accounts
BLUESKY_MAX_CHARACTERS = 300
BLUESKY_MAX_IMAGES = 4
BLUESKY_MAX_VIDEOS = 1
BLUESKY_VIDEO_MIME_TYPE = "video/mp4"

MediaKind = Literal["image", "video", "other"]


def count_code_points(text: str) -> int:
    """Length as composers display it: Unicode code points, not bytes or UTF-16 units."""
    # Python str is already a sequence of code points.
    return len(text)


def classify_media_type(mime_type: str) -> MediaKind:
    normalized = (mime_type or "").lower()
    if normalized.startswith("image/"):
        return "image"
    if normalized.startswith("video/"):
        return "video"
    return "other"
