"""Typed failures raised by the dispatch core.

Every kind carries a stable machine-readable ``code``, a human message and
the HTTP status the thin transport maps it to. None of them are retried by
the core: a conflict reflects a real concurrent change the caller has to
re-read, and ``UnavailableError`` is the only kind that is safe to retry
(commands are atomic, nothing partial is ever visible).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DispatchError(Exception):
    code = "dispatch_error"
    http_status = 500

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


class NotFoundError(DispatchError):
    code = "not_found"
    http_status = 404


class ForbiddenError(DispatchError):
    code = "forbidden"
    http_status = 403


class ConflictError(DispatchError):
    code = "conflict"
    http_status = 409

    @classmethod
    def transition(cls, current: str, target: str) -> "ConflictError":
        """Illegal ``current→target`` transition."""
        return cls(
            f"transition {current}→{target} is not allowed",
            details={"from": current, "to": target},
        )


class ValidationError(DispatchError):
    code = "validation_error"
    http_status = 400


class UnavailableError(DispatchError):
    code = "unavailable"
    http_status = 503
