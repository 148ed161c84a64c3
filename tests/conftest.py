"""Shared pytest fixtures and configuration

This file contains fixtures that can be used across all test files.
Pytest automatically discovers this file and makes fixtures available.
"""

import json
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from core.job_store import JobStore
from core.models.request import PublishRequest
from core.validation import Validator
from socials.base import MediaItem, Segment
from socials.capabilities import MastodonLimits
from socials.targets import BlueskyTarget, MastodonTarget, Targets, XTarget
from socials.types import DeliverySuccess

# ==================== Credentials & Requests ====================


@pytest.fixture
def encryption_key():
    """A fixed 32-byte key"""
    return bytes(range(32))


@pytest.fixture
def x_target():
    return XTarget(
        consumer_key="ck",
        consumer_secret="cs",
        access_token="at",
        access_token_secret="ats",
    )


@pytest.fixture
def bluesky_target():
    return BlueskyTarget(identifier="devils.bsky.social", app_password="abcd-efgh-ijkl")


@pytest.fixture
def mastodon_target():
    return MastodonTarget(instance_url="https://mastodon.example", access_token="token-123", visibility="unlisted")


@pytest.fixture
def all_targets(x_target, bluesky_target, mastodon_target):
    return Targets(x=x_target, bluesky=bluesky_target, mastodon=mastodon_target)


@pytest.fixture
def make_request(all_targets):
    """Factory fixture for PublishRequests

    Args:
        texts: segment texts (one per segment)
        targets: Targets, defaults to all three platforms
        media: {segment_index: [MediaItem, ...]}
    """

    def _create(texts=("Hello from the test suite",), targets=None, media=None, client_request_id=None):
        segments = [Segment(text=text) for text in texts]
        for index, items in (media or {}).items():
            segments[index].media.extend(items)
        return PublishRequest(
            targets=targets or all_targets,
            segments=segments,
            client_request_id=client_request_id,
        )

    return _create


@pytest.fixture
def image():
    def _create(name="photo.jpg", mime_type="image/jpeg", alt_text=None):
        return MediaItem(data=b"\xff\xd8\xff" + name.encode(), file_name=name, mime_type=mime_type, alt_text=alt_text)

    return _create


@pytest.fixture
def video():
    def _create(name="clip.mp4", mime_type="video/mp4"):
        return MediaItem(data=b"\x00\x00\x00\x18ftypmp42", file_name=name, mime_type=mime_type)

    return _create


# ==================== Mock Collaborators ====================


@pytest.fixture
def mastodon_limits():
    return MastodonLimits(
        instance_url="https://mastodon.example",
        max_characters=500,
        max_media_attachments=4,
        characters_reserved_per_url=23,
    )


@pytest.fixture
def mock_capabilities(mastodon_limits):
    """Capability cache stand-in that never touches the network"""
    capabilities = Mock()
    capabilities.get.return_value = mastodon_limits
    return capabilities


@pytest.fixture
def validator(mock_capabilities):
    return Validator(mock_capabilities)


@pytest.fixture
def make_publisher():
    """Factory for Publisher mocks that succeed (or raise `error`)"""

    def _create(platform, error=None):
        publisher = Mock()
        publisher.platform = platform
        if error is not None:
            publisher.publish.side_effect = error
        else:
            publisher.publish.return_value = DeliverySuccess(
                platform=platform,
                external_id=f"{platform}-root",
                url=f"https://{platform}.example/post/1",
            )
        return publisher

    return _create


@pytest.fixture
def publishers(make_publisher):
    return {name: make_publisher(name) for name in ("x", "bluesky", "mastodon")}


# ==================== File System Fixtures ====================


@pytest.fixture
def jobs_file(tmp_path):
    return tmp_path / "data" / "jobs.json"


@pytest.fixture
def job_store(jobs_file):
    store = JobStore(jobs_file)
    store.init()
    return store


# ==================== Time Fixtures ====================


@pytest.fixture
def frozen_time():
    """Freeze time for testing (requires freezegun)"""
    from freezegun import freeze_time

    frozen = freeze_time("2025-10-31 20:00:00")
    frozen.start()

    yield datetime(2025, 10, 31, 20, 0, 0, tzinfo=timezone.utc)

    frozen.stop()


# ==================== Pytest Configuration ====================


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow")


# ==================== Helper Functions ====================


@pytest.fixture
def assert_valid_json():
    """Fixture that provides a helper to validate JSON files"""

    def _assert_valid_json(file_path):
        """Validate that a file contains valid JSON"""
        with open(file_path) as f:
            return json.load(f)  # Will raise if invalid

    return _assert_valid_json
