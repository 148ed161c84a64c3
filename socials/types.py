# socials/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

PlatformName = Literal["x", "bluesky", "mastodon"]


@dataclass
class PostRef:
    """Normalized reference to a single published post on one platform.

    platform:  "x" | "bluesky" | "mastodon"
    id:        canonical id for the platform (tweet id, Bluesky at:// URI, Mastodon status id)
    uri:       public web URL if the client can build one
    cid:       Bluesky CID (needed to build reply refs)
    raw:       raw dict returned by the platform (debugging/forensics)
    """

    platform: PlatformName
    id: str
    uri: str | None = None
    cid: str | None = None
    raw: dict[str, Any] | None = None


@dataclass
class DeliverySuccess:
    """A target accepted the whole thread; `external_id` is the root post."""

    platform: PlatformName
    external_id: str
    url: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None

    ok = True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ok": True, "platform": self.platform, "id": self.external_id}
        if self.url is not None:
            data["url"] = self.url
        if self.raw is not None:
            data["raw"] = self.raw
        return data


@dataclass
class DeliveryFailure:
    platform: PlatformName
    error_message: str

    ok = False

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "platform": self.platform, "error": self.error_message}


DeliveryResult = Union[DeliverySuccess, DeliveryFailure]


def delivery_from_dict(data: Dict[str, Any]) -> DeliveryResult:
    """Inverse of ``DeliverySuccess.to_dict`` / ``DeliveryFailure.to_dict``."""
    if data.get("ok"):
        return DeliverySuccess(
            platform=data["platform"],
            external_id=str(data["id"]),
            url=data.get("url"),
            raw=data.get("raw"),
        )
    return DeliveryFailure(platform=data["platform"], error_message=data.get("error", ""))


@dataclass
class DispatchOutcome:
    """Aggregate result of one fan-out. Never built with zero successes."""

    overall: Literal["success", "partial"]
    posted_at: datetime
    deliveries: Dict[str, DeliveryResult] = field(default_factory=dict)
    client_request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "overall": self.overall,
            "posted_at": self.posted_at.isoformat(),
            "deliveries": {name: d.to_dict() for name, d in self.deliveries.items()},
        }
        if self.client_request_id is not None:
            data["client_request_id"] = self.client_request_id
        return data
