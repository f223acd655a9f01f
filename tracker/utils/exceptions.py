"""
Exceptions for the match tracker with user-facing messages.

Validation, authorization and conflict errors are deterministic and may be
shown verbatim to the initiating user. TransientStoreError marks retryable
store I/O failures and is never raised for a lost write race.
"""

from typing import List, Optional


class TrackerError(Exception):
    """Base exception for match tracker errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class ValidationError(TrackerError):
    """Raised when submitted data violates the scoring or match rules."""
    def __init__(self, errors: List[str], field: Optional[str] = None):
        self.errors = list(errors)
        self.field = field
        reason = "; ".join(self.errors)
        location = f" ({field})" if field else ""
        super().__init__(
            f"Validation failed{location}: {reason}",
            f"❌ {reason}"
        )


class ConflictError(TrackerError):
    """Raised for illegal transitions and stale-version writes."""
    def __init__(self, message: str):
        super().__init__(
            message,
            f"❌ {message}. Refresh the match and try again."
        )


class IllegalTransitionError(ConflictError):
    """Raised when a match cannot move between the requested statuses."""
    def __init__(self, match_id: int, from_status: str, to_status: str):
        self.match_id = match_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Match {match_id} cannot transition from '{from_status}' to '{to_status}'"
        )


class StaleMatchError(ConflictError):
    """Raised when the stored match changed since the caller read it."""
    def __init__(self, match_id: int, expected: str, actual: str):
        self.match_id = match_id
        super().__init__(
            f"Match {match_id} was modified concurrently (expected {expected}, found {actual})"
        )


class AuthorizationError(TrackerError):
    """Raised when an actor is not a participant of the match."""
    def __init__(self, actor_id: str, match_id: int, action: str):
        self.actor_id = actor_id
        self.match_id = match_id
        super().__init__(
            f"Actor {actor_id} is not a participant of match {match_id} and cannot {action}",
            f"❌ Only match participants can {action}."
        )


class NotFoundError(TrackerError):
    """Raised when a referenced match or player record does not exist."""
    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(
            f"{kind} {identifier} not found",
            f"❌ {kind} not found."
        )


class TransientStoreError(TrackerError):
    """Raised when the record store fails in a way that is safe to retry."""
    def __init__(self, operation: str, details: str = None):
        self.operation = operation
        super().__init__(
            f"Store error during {operation}: {details}",
            "❌ Storage is temporarily unavailable. Please try again later."
        )
