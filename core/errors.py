"""
Error taxonomy for collection access and membership transitions.

Every error carries a stable machine-readable ``code`` that the API layer
maps to an HTTP status.
"""

from typing import Any, Dict, Optional


class AccessError(Exception):
    """Base class for all collection access errors."""

    code = "access_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class PermissionDenied(AccessError):
    """Raised when the actor's role lacks the tier required for an action."""

    code = "permission_denied"


class InvariantViolation(AccessError):
    """Raised when a change would break a collection invariant."""

    code = "invariant_violation"


class NotFound(AccessError):
    """Raised when a collection, post or user id does not resolve."""

    code = "not_found"


class TransientStoreError(AccessError):
    """Raised when the backing store fails during a read or write."""

    code = "store_unavailable"


class UploadError(TransientStoreError):
    """Raised when media storage rejects or fails an upload."""

    code = "upload_failed"


class StaleStateConflict(AccessError):
    """
    Raised when the authoritative record no longer satisfies a transition.

    Typical cause: another actor changed the record between the time the
    caller looked at it and the time the write was confirmed.
    """

    code = "stale_state"


class MutationInFlight(AccessError):
    """Raised when the same action is triggered while a previous one is pending."""

    code = "mutation_in_flight"
