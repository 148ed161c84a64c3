"""
Publish requests: the strict internal shape and the builder that produces it
from a loosely typed payload (decoded JSON/YAML body + uploaded files).

Nothing past ``build_publish_request`` ever looks at untyped data again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from core.errors import ValidationError
from socials.base import MediaItem, Segment
from socials.targets import Targets

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 5000
MAX_THREAD_SEGMENTS = 100
MAX_MEDIA_ITEMS = 100
MAX_ALT_TEXT_LENGTH = 1000
MAX_CLIENT_REQUEST_ID_LENGTH = 128

PAYLOAD_FIELDS = ("text", "thread", "schedule_at", "targets", "media", "client_request_id")


@dataclass
class PublishRequest:
    targets: Targets
    segments: List[Segment] = field(default_factory=list)
    client_request_id: Optional[str] = None


def _issue(path: str, message: str) -> Dict[str, str]:
    return {"path": path, "message": message}


def _text(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{path} must be a string", errors=[_issue(path, "Expected a string")])
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{path} must not be empty", errors=[_issue(path, "Must not be empty")])
    if len(trimmed) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"{path} must be at most {MAX_TEXT_LENGTH} characters",
            errors=[_issue(path, "Too long")],
        )
    return trimmed


def _base_segments(payload: Mapping[str, Any]) -> List[Segment]:
    has_text = payload.get("text") is not None
    has_thread = payload.get("thread") is not None

    if has_text and has_thread:
        raise ValidationError(
            "Provide either text or thread, not both",
            errors=[_issue("thread", "Provide either text or thread, not both")],
        )

    if has_text:
        return [Segment(text=_text(payload["text"], "text"))]

    if has_thread:
        thread = payload["thread"]
        if not isinstance(thread, list) or not thread:
            raise ValidationError("thread must be a non-empty list", errors=[_issue("thread", "Expected a list")])
        if len(thread) > MAX_THREAD_SEGMENTS:
            raise ValidationError(
                f"thread allows at most {MAX_THREAD_SEGMENTS} segments",
                errors=[_issue("thread", "Too many segments")],
            )
        segments: List[Segment] = []
        for index, item in enumerate(thread):
            path = f"thread.{index}"
            if not isinstance(item, Mapping):
                raise ValidationError(f"{path} must be an object", errors=[_issue(path, "Expected an object")])
            unknown = [k for k in item.keys() if k != "text"]
            if unknown:
                raise ValidationError(
                    f"Unrecognized field(s) in {path}: {', '.join(sorted(map(str, unknown)))}",
                    errors=[_issue(f"{path}.{k}", "Unrecognized field") for k in unknown],
                )
            segments.append(Segment(text=_text(item.get("text"), f"{path}.text")))
        return segments

    raise ValidationError("Provide either text or thread", errors=[_issue("text", "Provide either text or thread")])


def _media_metadata(raw: Any) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        raise ValidationError("media must be a list", errors=[_issue("media", "Expected a list")])
    if len(raw) > MAX_MEDIA_ITEMS:
        raise ValidationError(f"media allows at most {MAX_MEDIA_ITEMS} entries", errors=[_issue("media", "Too many")])

    metadata: List[Dict[str, Any]] = []
    for index, item in enumerate(raw):
        path = f"media.{index}"
        if not isinstance(item, Mapping):
            raise ValidationError(f"{path} must be an object", errors=[_issue(path, "Expected an object")])
        unknown = [k for k in item.keys() if k not in ("alt_text", "thread_index")]
        if unknown:
            raise ValidationError(
                f"Unrecognized field(s) in {path}: {', '.join(sorted(map(str, unknown)))}",
                errors=[_issue(f"{path}.{k}", "Unrecognized field") for k in unknown],
            )

        alt_text = item.get("alt_text")
        if alt_text is not None:
            if not isinstance(alt_text, str) or len(alt_text.strip()) > MAX_ALT_TEXT_LENGTH:
                raise ValidationError(f"{path}.alt_text is invalid", errors=[_issue(f"{path}.alt_text", "Invalid")])
            alt_text = alt_text.strip()

        thread_index = item.get("thread_index")
        if thread_index is not None and (
            isinstance(thread_index, bool) or not isinstance(thread_index, int) or thread_index < 0
        ):
            raise ValidationError(
                f"{path}.thread_index must be a non-negative integer",
                errors=[_issue(f"{path}.thread_index", "Expected a non-negative integer")],
            )

        metadata.append({"alt_text": alt_text, "thread_index": thread_index})
    return metadata


def _client_request_id(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    if not isinstance(raw, str) or not raw.strip() or len(raw.strip()) > MAX_CLIENT_REQUEST_ID_LENGTH:
        raise ValidationError(
            f"client_request_id must be 1-{MAX_CLIENT_REQUEST_ID_LENGTH} characters",
            errors=[_issue("client_request_id", "Invalid")],
        )
    return raw.strip()


def build_publish_request(
    payload: Mapping[str, Any],
    media_files: Sequence[MediaItem] = (),
) -> Tuple[PublishRequest, Optional[str]]:
    """
    Validate a raw payload and attach uploaded files to their segments.

    Returns the request and the raw ``schedule_at`` value (``None`` for an
    immediate post). A media ``thread_index`` pointing past the last segment is
    rejected here; deferred-job rehydration is lenient about the same thing.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be an object", errors=[_issue("", "Expected an object")])

    unknown = sorted(str(k) for k in payload.keys() if k not in PAYLOAD_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unrecognized field(s): {', '.join(unknown)}",
            errors=[_issue(k, "Unrecognized field") for k in unknown],
        )

    targets = Targets.from_dict(payload.get("targets"))
    segments = _base_segments(payload)
    client_request_id = _client_request_id(payload.get("client_request_id"))

    schedule_at = payload.get("schedule_at")
    if schedule_at is not None and not isinstance(schedule_at, str):
        raise ValidationError("schedule_at must be an ISO 8601 string", errors=[_issue("schedule_at", "Invalid")])

    raw_media = payload.get("media")
    metadata = _media_metadata(raw_media) if raw_media is not None else None

    if not media_files:
        if metadata:
            raise ValidationError(
                "payload.media is present but no media files were uploaded",
                problem_type="invalid-request",
                title="Invalid request body",
            )
        return PublishRequest(targets=targets, segments=segments, client_request_id=client_request_id), schedule_at

    if metadata is not None and len(metadata) != len(media_files):
        raise ValidationError(
            "payload.media length must match number of media files",
            problem_type="invalid-request",
            title="Invalid request body",
        )

    if metadata is None:
        metadata = [{"alt_text": None, "thread_index": 0} for _ in media_files]

    for index, (uploaded, meta) in enumerate(zip(media_files, metadata)):
        segment_index = meta["thread_index"] if meta["thread_index"] is not None else 0
        if segment_index >= len(segments):
            raise ValidationError(
                f"media[{index}] references thread_index {segment_index}, but there are {len(segments)} segment(s)",
                problem_type="invalid-request",
                title="Invalid media mapping",
            )
        segments[segment_index].media.append(
            MediaItem(
                data=uploaded.data,
                file_name=uploaded.file_name,
                mime_type=uploaded.mime_type,
                alt_text=meta["alt_text"] if meta["alt_text"] is not None else uploaded.alt_text,
            )
        )

    logger.debug(
        "Built publish request: %d segment(s), %d media file(s), targets=%s",
        len(segments),
        len(media_files),
        targets.platforms,
    )
    return PublishRequest(targets=targets, segments=segments, client_request_id=client_request_id), schedule_at
