"""
Statistics data models.

Results returned by the stats aggregator besides the persisted PlayerStats
record itself.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class StatsCounters:
    """Derived counters for one player, computed without touching the store."""
    player_id: str
    games_played: int = 0
    total_wins: int = 0
    total_losses: int = 0
    win_streak: int = 0
    max_win_streak: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            'games_played': self.games_played,
            'total_wins': self.total_wins,
            'total_losses': self.total_losses,
            'win_streak': self.win_streak,
            'max_win_streak': self.max_win_streak,
        }


@dataclass(frozen=True)
class ResyncResult:
    """Outcome of resyncing one player during a bulk resync."""
    player_id: str
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class FieldDiscrepancy:
    """Difference between the cached and the freshly computed value."""
    current: Optional[int]
    calculated: int

    @property
    def difference(self) -> int:
        return self.calculated - (self.current or 0)


@dataclass(frozen=True)
class StatsCheckReport:
    """Comparison of a player's cached stats with their match history."""
    player_id: str
    match_count: int
    calculated: StatsCounters
    discrepancies: Dict[str, FieldDiscrepancy] = field(default_factory=dict)

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.discrepancies)
