"""Error taxonomy for the swipematch library.

Every caller-facing failure raised by the engine derives from
:class:`MatchingError` and carries a stable ``code`` that an outer API
layer can map onto its own status codes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MatchingError(Exception):
    """Base class for all engine errors."""

    code: str = "MATCHING_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class ValidationError(MatchingError):
    """Malformed input or an operation that is invalid for the current state."""

    code = "VALIDATION_ERROR"


class AlreadyActedError(MatchingError):
    """The swiper already holds an active swipe on the target."""

    code = "ALREADY_SWIPED"


class LimitExceededError(MatchingError):
    """A daily quota or tier feature gate was hit."""

    code = "LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str,
        *,
        limit_type: Optional[str] = None,
        limit: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        if limit_type is not None:
            merged["limit_type"] = limit_type
        if limit is not None:
            merged["limit"] = limit
        super().__init__(message, details=merged)
        self.limit_type = limit_type
        self.limit = limit


class NotFoundError(MatchingError):
    """Referenced user, swipe or match does not exist."""

    code = "NOT_FOUND"


class ForbiddenError(MatchingError):
    """Caller is not allowed to act on the referenced record."""

    code = "FORBIDDEN"


class ConflictError(MatchingError):
    """Store-level uniqueness violation. Handled internally, never surfaced."""

    code = "CONFLICT"


class TransientStoreError(MatchingError):
    """Retryable store failure (timeouts, dropped connections)."""

    code = "TRANSIENT"
