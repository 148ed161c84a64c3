"""
Exception hierarchy for the crosspost core.

Every error raised on purpose by validation, dispatch or scheduling derives
from ``CrosspostError`` so whatever wraps the core (HTTP layer, CLI) can turn
it into a problem response without guessing at the category.

Hierarchy:
    Exception
    +-- CrosspostError
        +-- ValidationError (also ValueError)          400
        |   +-- InvalidSchedule                        400
        +-- UpstreamError                              502
        |   +-- UpstreamUnreachable
        |   +-- UpstreamInvalid
        |   +-- AllTargetsFailed
        +-- NotFound                                   404
        +-- Conflict                                   409
        +-- DecryptionError                            500
        +-- ConfigurationError                         500
        +-- InternalError                              500
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

PROBLEM_BASE_URL = "https://crosspost.local/problems/"


class CrosspostError(Exception):
    """Base class for all crosspost errors."""

    status: int = 500
    problem_type: str = "internal-error"
    title: str = "Internal error"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        problem_type: Optional[str] = None,
        title: Optional[str] = None,
        errors: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        if problem_type:
            self.problem_type = problem_type
        if title:
            self.title = title
        self.detail = detail or self.title
        self.errors = errors or []
        super().__init__(self.detail)

    def to_problem(self, instance: Optional[str] = None) -> Dict[str, Any]:
        """Render the error as an RFC 7807 style problem document."""
        problem: Dict[str, Any] = {
            "type": PROBLEM_BASE_URL + self.problem_type,
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
        }
        if instance:
            problem["instance"] = instance
        if self.errors:
            problem["errors"] = list(self.errors)
        return problem


class ValidationError(CrosspostError, ValueError):
    """The request violates a structural or per-platform content rule."""

    status = 400
    problem_type = "validation-error"
    title = "Validation failed"


class InvalidSchedule(ValidationError):
    """The requested run time is unparseable or not in the future."""

    problem_type = "invalid-schedule"
    title = "Invalid schedule"


class UpstreamError(CrosspostError):
    """A remote platform or capability source failed. Safe to retry."""

    status = 502
    problem_type = "upstream-error"
    title = "Upstream error"


class UpstreamUnreachable(UpstreamError):
    """The remote could not be reached at all (DNS, TCP, TLS, timeout)."""

    problem_type = "upstream-unreachable"
    title = "Upstream unavailable"


class UpstreamInvalid(UpstreamError):
    """The remote answered with a non-2xx status or an unusable body."""

    problem_type = "upstream-invalid"
    title = "Upstream returned an invalid response"


class AllTargetsFailed(UpstreamError):
    """No requested target accepted the post."""

    problem_type = "delivery-failed"
    title = "Delivery failed"

    def __init__(self, detail: Optional[str] = None, deliveries: Optional[Dict[str, Any]] = None) -> None:
        self.deliveries = deliveries or {}
        super().__init__(
            detail or "None of the target platforms accepted the post. Check per-platform error details."
        )

    def to_problem(self, instance: Optional[str] = None) -> Dict[str, Any]:
        problem = super().to_problem(instance)
        if self.deliveries:
            problem["deliveries"] = {
                name: result.to_dict() if hasattr(result, "to_dict") else result
                for name, result in self.deliveries.items()
            }
        return problem


class NotFound(CrosspostError):
    status = 404
    problem_type = "not-found"
    title = "Job not found"


class Conflict(CrosspostError):
    status = 409
    problem_type = "conflict"
    title = "Job cannot be cancelled"


class DecryptionError(CrosspostError):
    """A sealed payload could not be opened (bad format, wrong key, tampered)."""

    problem_type = "decryption-failed"
    title = "Stored payload could not be decrypted"


class ConfigurationError(CrosspostError):
    problem_type = "configuration-error"
    title = "Invalid configuration"


class InternalError(CrosspostError):
    pass
