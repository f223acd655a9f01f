from .database import Database
from .models import Base, Match, MatchStatus, AuditEntry, PlayerStats

__all__ = ['Database', 'Base', 'Match', 'MatchStatus', 'AuditEntry', 'PlayerStats']
