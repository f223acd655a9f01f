"""
Tracker-wide constants.

Score rules and heuristic thresholds used by score validation and fraud
review live here so the numbers are defined in one place.
"""

class ScoreRules:
    """Rules that decide whether a final score is legitimate."""
    
    MINIMUM_WINNING_SCORE = 21
    MINIMUM_WIN_MARGIN = 2
    MAXIMUM_REASONABLE_SCORE = 50

class ScoreHeuristics:
    """Thresholds for advisory (non-blocking) score pattern checks."""
    
    ROUND_NUMBER_THRESHOLD = 25  # Round scores above this are flagged
    EXTREME_DIFFERENCE = 15      # Margins above this are flagged
    
    # Confidence starts here and is reduced per matched pattern
    BASE_CONFIDENCE = 100
    SEVERITY_PENALTIES = {
        'low': 5,
        'medium': 15,
        'high': 30,
    }

class HistoryHeuristics:
    """Thresholds for advisory analysis of a player's score history."""
    
    HIGH_WIN_RATE = 0.95
    HIGH_AVERAGE_MARGIN = 10
    REPEATED_SCORE_COUNT = 3  # Same exact score more than this many times

class AuditConstants:
    """Constants for audit trail review."""
    
    LOW_CONFIDENCE_THRESHOLD = 70  # Completion entries below this need review
    DEFAULT_ACTOR_HISTORY_LIMIT = 100

class StatsConstants:
    """Constants for player statistics reads."""
    
    LEADERBOARD_PREVIEW_SIZE = 3
    DEFAULT_MATCH_LIST_LIMIT = 10
