"""
Scheduled job records.

``Job`` is the canonical stored shape (owned by ``JobStore``);
``JobSummary`` is the projection handed to callers, without the sealed
payload and the on-disk media paths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from socials.types import DeliveryResult, delivery_from_dict


class JobStatus(str, Enum):
    """Lifecycle status of a scheduled job.

    Transitions:
        SCHEDULED -> RUNNING -> SUCCEEDED | PARTIAL | FAILED
        SCHEDULED -> CANCELLED
    """

    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


def parse_timestamp(value: str) -> datetime:
    """ISO 8601 -> aware UTC datetime. Accepts a trailing 'Z'."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp {value!r} has no UTC offset")
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _optional_timestamp(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


@dataclass(frozen=True)
class MediaReference:
    path: str
    segment_index: int
    file_name: str
    mime_type: str
    alt_text: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "path": self.path,
            "segment_index": self.segment_index,
            "file_name": self.file_name,
            "mime_type": self.mime_type,
        }
        if self.alt_text is not None:
            data["alt_text"] = self.alt_text
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaReference":
        return cls(
            path=data["path"],
            segment_index=int(data["segment_index"]),
            file_name=data["file_name"],
            mime_type=data["mime_type"],
            alt_text=data.get("alt_text"),
        )


@dataclass(frozen=True)
class JobSummary:
    id: str
    created_at: datetime
    run_at: datetime
    status: JobStatus
    attempt_count: int
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    deliveries: Optional[Dict[str, DeliveryResult]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "created_at": format_timestamp(self.created_at),
            "run_at": format_timestamp(self.run_at),
            "status": self.status.value,
            "attempt_count": self.attempt_count,
        }
        if self.completed_at is not None:
            data["completed_at"] = format_timestamp(self.completed_at)
        if self.last_error is not None:
            data["last_error"] = self.last_error
        if self.deliveries is not None:
            data["deliveries"] = {name: d.to_dict() for name, d in self.deliveries.items()}
        return data


@dataclass(frozen=True)
class Job:
    """
    A deferred publish.

    Attributes:
        id: Opaque unique identifier (UUID4 hex string).
        created_at: When the job was accepted (UTC).
        run_at: When the job becomes due (UTC, strictly future at creation).
        status: Current lifecycle status.
        encrypted_payload: Sealed ``{targets, segments: [{text}], client_request_id}``.
        media: Ordered references to media bytes parked on disk.
        attempt_count: Times execution started (0 or 1, failed jobs are not retried).
        completed_at: Set on any terminal transition.
        last_error: Message of the failure that made the job ``failed``.
        deliveries: Per-platform results once dispatched.
    """

    id: str
    created_at: datetime
    run_at: datetime
    status: JobStatus
    encrypted_payload: str
    media: List[MediaReference] = field(default_factory=list)
    attempt_count: int = 0
    completed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    deliveries: Optional[Dict[str, DeliveryResult]] = None

    def summary(self) -> JobSummary:
        return JobSummary(
            id=self.id,
            created_at=self.created_at,
            run_at=self.run_at,
            status=self.status,
            attempt_count=self.attempt_count,
            completed_at=self.completed_at,
            last_error=self.last_error,
            deliveries=self.deliveries,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.summary().to_dict()
        data["encrypted_payload"] = self.encrypted_payload
        data["media"] = [m.to_dict() for m in self.media]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        deliveries = data.get("deliveries")
        return cls(
            id=data["id"],
            created_at=parse_timestamp(data["created_at"]),
            run_at=parse_timestamp(data["run_at"]),
            status=JobStatus(data["status"]),
            encrypted_payload=data["encrypted_payload"],
            media=[MediaReference.from_dict(m) for m in data.get("media", [])],
            attempt_count=int(data.get("attempt_count", 0)),
            completed_at=_optional_timestamp(data.get("completed_at")),
            last_error=data.get("last_error"),
            deliveries={k: delivery_from_dict(v) for k, v in deliveries.items()} if deliveries is not None else None,
        )
