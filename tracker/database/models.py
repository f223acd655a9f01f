from sqlalchemy import (
    Column, Integer, String, DateTime, Text, ForeignKey,
    Enum as SQLEnum, CheckConstraint, event
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
from enum import Enum
from typing import Optional, Dict, Any

Base = declarative_base()

class MatchStatus(Enum):
    """Status of a match from scheduling to a terminal state"""
    SCHEDULED = "scheduled"      # Created by a participant, not started
    IN_PROGRESS = "in_progress"  # Being played
    COMPLETED = "completed"      # Final score recorded (terminal)
    CANCELLED = "cancelled"      # Called off (terminal)

class Match(Base):
    """
    A contest between exactly two distinct participants.

    Matches are never deleted; cancellation is a status. Every write goes
    through a compare-and-swap on ``version`` so concurrent transitions on
    the same match serialize instead of overwriting each other.
    """
    __tablename__ = 'matches'

    id = Column(Integer, primary_key=True)

    # Participants
    player1_id = Column(String(128), nullable=False, index=True)
    player2_id = Column(String(128), nullable=False, index=True)

    # Scores
    player1_score = Column(Integer, nullable=False, default=0)
    player2_score = Column(Integer, nullable=False, default=0)

    # Lifecycle
    status = Column(SQLEnum(MatchStatus), nullable=False, default=MatchStatus.SCHEDULED, index=True)
    winner_id = Column(String(128), nullable=True)
    loser_id = Column(String(128), nullable=True)

    # Scheduling details
    scheduled_date = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    location = Column(String(100))
    notes = Column(Text)

    # Accountability
    created_by = Column(String(128))
    last_updated_by = Column(String(128))

    # Optimistic concurrency token
    version = Column(Integer, nullable=False, default=1)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now())

    # Relationships
    score_update_history = relationship(
        "AuditEntry",
        order_by="AuditEntry.id",
        viewonly=True
    )

    __table_args__ = (
        CheckConstraint('player1_id != player2_id', name='ck_match_distinct_players'),
        CheckConstraint('player1_score >= 0 AND player2_score >= 0', name='ck_match_scores_non_negative'),
    )

    @property
    def participant_ids(self) -> tuple:
        return (self.player1_id, self.player2_id)

    def is_participant(self, player_id: str) -> bool:
        return player_id in self.participant_ids

    def score_for(self, player_id: str) -> Optional[int]:
        """Get the score recorded for one participant"""
        if player_id == self.player1_id:
            return self.player1_score
        if player_id == self.player2_id:
            return self.player2_score
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'player1_id': self.player1_id,
            'player2_id': self.player2_id,
            'player1_score': self.player1_score,
            'player2_score': self.player2_score,
            'status': self.status.value if self.status else None,
            'winner_id': self.winner_id,
            'loser_id': self.loser_id,
            'scheduled_date': self.scheduled_date.isoformat() if self.scheduled_date else None,
            'completed_date': self.completed_date.isoformat() if self.completed_date else None,
            'location': self.location,
            'notes': self.notes,
            'last_updated_by': self.last_updated_by,
            'version': self.version,
        }

    def __repr__(self):
        status = self.status.value if self.status else None
        return (
            f"<Match(id={self.id}, {self.player1_id} {self.player1_score}-"
            f"{self.player2_score} {self.player2_id}, status={status}, version={self.version})>"
        )

class AuditEntry(Base):
    """
    One immutable record of a score/status change on a match.

    Entries are append-only: ordering is insertion order (``id``) and the
    listeners at the bottom of this module refuse any ORM update or delete.
    """
    __tablename__ = 'match_audit_entries'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, index=True)

    timestamp = Column(DateTime, nullable=False)
    updated_by = Column(String(128), nullable=False, index=True)

    # Before/after snapshot
    previous_player1_score = Column(Integer, nullable=False)
    previous_player2_score = Column(Integer, nullable=False)
    new_player1_score = Column(Integer, nullable=False)
    new_player2_score = Column(Integer, nullable=False)
    previous_status = Column(SQLEnum(MatchStatus), nullable=False)
    new_status = Column(SQLEnum(MatchStatus), nullable=False)

    # Score validation confidence, only recorded on completion
    confidence = Column(Integer, nullable=True)

    def __repr__(self):
        return (
            f"<AuditEntry(match_id={self.match_id}, by={self.updated_by}, "
            f"{self.previous_status.value}->{self.new_status.value})>"
        )

class PlayerStats(Base):
    """
    Cached result of the last statistics resync for a player.

    Never authored directly; always a pure function of the player's
    completed matches at ``last_synced_at``.
    """
    __tablename__ = 'player_stats'

    player_id = Column(String(128), primary_key=True)

    games_played = Column(Integer, nullable=False, default=0)
    total_wins = Column(Integer, nullable=False, default=0)
    total_losses = Column(Integer, nullable=False, default=0)
    win_streak = Column(Integer, nullable=False, default=0)      # As of the most recent completed match
    max_win_streak = Column(Integer, nullable=False, default=0)

    # Staleness markers
    last_synced_at = Column(DateTime, nullable=True)
    last_synced_match_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint('total_wins + total_losses = games_played', name='ck_stats_totals'),
        CheckConstraint('win_streak <= max_win_streak', name='ck_stats_streaks'),
    )

    @property
    def win_rate(self) -> float:
        if not self.games_played:
            return 0.0
        return (self.total_wins / self.games_played) * 100

    def counters(self) -> Dict[str, int]:
        """The derived counters, without sync metadata"""
        return {
            'games_played': self.games_played,
            'total_wins': self.total_wins,
            'total_losses': self.total_losses,
            'win_streak': self.win_streak,
            'max_win_streak': self.max_win_streak,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = {'player_id': self.player_id}
        data.update(self.counters())
        data['last_synced_at'] = self.last_synced_at.isoformat() if self.last_synced_at else None
        data['last_synced_match_count'] = self.last_synced_match_count
        return data

    def __repr__(self):
        return (
            f"<PlayerStats(player_id={self.player_id}, played={self.games_played}, "
            f"wins={self.total_wins}, streak={self.win_streak}/{self.max_win_streak})>"
        )

# ============================================================================
# SQLAlchemy Event Listeners for Append-Only Audit Entries
# ============================================================================

@event.listens_for(AuditEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):
    """Audit entries are never edited once appended"""
    raise ValueError(f"Audit entry {target.id} is append-only and cannot be modified")

@event.listens_for(AuditEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    """Audit entries are never removed once appended"""
    raise ValueError(f"Audit entry {target.id} is append-only and cannot be deleted")
