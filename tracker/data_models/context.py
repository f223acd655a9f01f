"""
Request context and transition payloads.

The actor performing an operation is passed explicitly into every call that
needs identity instead of being read from ambient session state.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from tracker.database.models import MatchStatus


@dataclass(frozen=True)
class ActorContext:
    """Identity of the caller performing an operation."""
    actor_id: str
    source: str = "api"  # api, admin, scheduler

    def __post_init__(self):
        if not self.actor_id:
            raise ValueError("actor_id is required")


@dataclass(frozen=True)
class TransitionPayload:
    """Optional data accompanying a status transition."""
    scores: Optional[Tuple[int, int]] = None  # (player1_score, player2_score)
    expected_status: Optional[MatchStatus] = None
    expected_version: Optional[int] = None
    notes: Optional[str] = None

