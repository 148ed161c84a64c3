# socials/targets.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union
from urllib.parse import urlparse

from core.errors import ValidationError

Visibility = Literal["public", "unlisted", "private", "direct"]
VISIBILITIES = ("public", "unlisted", "private", "direct")


@dataclass(frozen=True)
class XTarget:
    """OAuth 1.0a user-context credentials (the same four keys tweepy takes)."""

    consumer_key: str
    consumer_secret: str
    access_token: str
    access_token_secret: str


@dataclass(frozen=True)
class BlueskyTarget:
    identifier: str
    app_password: str
    pds_url: str = "https://bsky.social"


@dataclass(frozen=True)
class MastodonTarget:
    instance_url: str
    access_token: str
    visibility: Optional[Visibility] = None


Credentials = Union[XTarget, BlueskyTarget, MastodonTarget]


@dataclass(frozen=True)
class Targets:
    """
    The set of requested destinations. At least one must be present.

    Built through ``Targets.from_dict`` so unknown platforms and unknown
    credential fields never make it into the core.
    """

    x: Optional[XTarget] = None
    bluesky: Optional[BlueskyTarget] = None
    mastodon: Optional[MastodonTarget] = None

    def requested(self) -> List[Tuple[str, Credentials]]:
        """(platform, credentials) pairs in dispatch order."""
        pairs: List[Tuple[str, Credentials]] = []
        if self.x:
            pairs.append(("x", self.x))
        if self.bluesky:
            pairs.append(("bluesky", self.bluesky))
        if self.mastodon:
            pairs.append(("mastodon", self.mastodon))
        return pairs

    @property
    def platforms(self) -> List[str]:
        return [name for name, _ in self.requested()]

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        data: Dict[str, Dict[str, Any]] = {}
        for name, creds in self.requested():
            data[name] = {k: v for k, v in asdict(creds).items() if v is not None}
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> "Targets":
        if not isinstance(raw, Mapping):
            raise ValidationError("targets must be an object", errors=[_issue("targets", "Expected an object")])

        _reject_unknown(raw, ("x", "bluesky", "mastodon"), "targets")

        x = _parse_x(raw["x"]) if raw.get("x") is not None else None
        bluesky = _parse_bluesky(raw["bluesky"]) if raw.get("bluesky") is not None else None
        mastodon = _parse_mastodon(raw["mastodon"]) if raw.get("mastodon") is not None else None

        if not (x or bluesky or mastodon):
            raise ValidationError(
                "At least one target platform is required",
                errors=[_issue("targets", "At least one target platform is required")],
            )
        return cls(x=x, bluesky=bluesky, mastodon=mastodon)


# ---------- parsing helpers ----------


def _issue(path: str, message: str) -> Dict[str, str]:
    return {"path": path, "message": message}


def _reject_unknown(raw: Mapping[str, Any], allowed: Tuple[str, ...], path: str) -> None:
    unknown = sorted(str(k) for k in raw.keys() if k not in allowed)
    if unknown:
        raise ValidationError(
            f"Unrecognized field(s) in {path}: {', '.join(unknown)}",
            errors=[_issue(f"{path}.{k}", "Unrecognized field") for k in unknown],
        )


def _string(raw: Mapping[str, Any], key: str, path: str, min_len: int = 1, max_len: int = 1024) -> str:
    value = raw.get(key)
    if not isinstance(value, str):
        raise ValidationError(f"{path}.{key} is required", errors=[_issue(f"{path}.{key}", "Expected a string")])
    if not (min_len <= len(value) <= max_len):
        raise ValidationError(
            f"{path}.{key} must be between {min_len} and {max_len} characters",
            errors=[_issue(f"{path}.{key}", "Invalid length")],
        )
    return value


def _url(raw: Mapping[str, Any], key: str, path: str) -> str:
    value = _string(raw, key, path, max_len=2048)
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"{path}.{key} must be an http(s) URL", errors=[_issue(f"{path}.{key}", "Invalid URL")])
    return value


def _mapping(raw: Any, path: str) -> Mapping[str, Any]:
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{path} must be an object", errors=[_issue(path, "Expected an object")])
    return raw


def _parse_x(raw: Any) -> XTarget:
    raw = _mapping(raw, "targets.x")
    fields = ("consumer_key", "consumer_secret", "access_token", "access_token_secret")
    _reject_unknown(raw, fields, "targets.x")
    return XTarget(**{f: _string(raw, f, "targets.x", max_len=512) for f in fields})


def _parse_bluesky(raw: Any) -> BlueskyTarget:
    raw = _mapping(raw, "targets.bluesky")
    _reject_unknown(raw, ("identifier", "app_password", "pds_url"), "targets.bluesky")
    return BlueskyTarget(
        identifier=_string(raw, "identifier", "targets.bluesky", max_len=256),
        app_password=_string(raw, "app_password", "targets.bluesky", min_len=6, max_len=256),
        pds_url=_url(raw, "pds_url", "targets.bluesky") if "pds_url" in raw else BlueskyTarget.pds_url,
    )


def _parse_mastodon(raw: Any) -> MastodonTarget:
    raw = _mapping(raw, "targets.mastodon")
    _reject_unknown(raw, ("instance_url", "access_token", "visibility"), "targets.mastodon")
    visibility = raw.get("visibility")
    if visibility is not None and visibility not in VISIBILITIES:
        raise ValidationError(
            f"targets.mastodon.visibility must be one of {', '.join(VISIBILITIES)}",
            errors=[_issue("targets.mastodon.visibility", "Invalid enum value")],
        )
    return MastodonTarget(
        instance_url=_url(raw, "instance_url", "targets.mastodon"),
        access_token=_string(raw, "access_token", "targets.mastodon", max_len=1024),
        visibility=visibility,
    )
