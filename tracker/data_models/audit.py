"""
Audit data models.

Read-side value objects for the append-only audit trail. Records are frozen
and handed out in tuples so callers cannot edit the log in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from tracker.database.models import MatchStatus


@dataclass(frozen=True)
class AuditRecord:
    """Single score/status change on a match."""
    entry_id: int
    match_id: int
    timestamp: datetime
    updated_by: str
    previous_scores: Tuple[int, int]
    new_scores: Tuple[int, int]
    previous_status: MatchStatus
    new_status: MatchStatus
    confidence: Optional[int] = None

    @property
    def is_score_update(self) -> bool:
        return self.previous_scores != self.new_scores

    def describe(self) -> str:
        """Human-readable description for dispute review"""
        if self.is_score_update:
            return (
                f"Score updated from {self.previous_scores[0]}-{self.previous_scores[1]} "
                f"to {self.new_scores[0]}-{self.new_scores[1]} by {self.updated_by}"
            )
        return (
            f"Status changed from {self.previous_status.value} "
            f"to {self.new_status.value} by {self.updated_by}"
        )


@dataclass(frozen=True)
class LowConfidenceEntry:
    """Audit entry flagged for manual review."""
    entry_id: int
    match_id: int
    confidence: int


@dataclass(frozen=True)
class AuditSummary:
    """Aggregate view of a set of audit records for administrative review."""
    total_entries: int = 0
    score_updates: int = 0
    status_changes: int = 0
    average_confidence: Optional[float] = None
    low_confidence_entries: Tuple[LowConfidenceEntry, ...] = ()
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None
    actor_activity: Dict[str, int] = field(default_factory=dict)
