"""
Score Validation for Ping-Pong Match Results

Decides whether a reported final score is legitimate and flags patterns that
are legal but statistically unusual. Validation is a pure function of the two
scores: it does not depend on match state and has no side effects.

Hard rules (any failure makes the score invalid):
- Both scores are non-negative integers
- No ties
- Winner reaches at least 21 and wins by at least 2
- Neither score exceeds 50

Heuristics never invalidate a score. They only add warnings and lower the
advisory confidence used by fraud review.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from tracker.constants import ScoreRules, ScoreHeuristics, HistoryHeuristics
from tracker.utils.exceptions import ValidationError


@dataclass(frozen=True)
class SuspiciousPattern:
    """A legal but unusual score pattern"""
    type: str
    description: str
    severity: str  # low, medium, high


@dataclass(frozen=True)
class ScoreValidationResult:
    """Outcome of validating one score pair"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suspicious_patterns: List[SuspiciousPattern] = field(default_factory=list)
    winner: Optional[str] = None  # "player1", "player2" or None for ties
    score_difference: int = 0
    confidence: int = ScoreHeuristics.BASE_CONFIDENCE


@dataclass(frozen=True)
class ScoreHistoryRecord:
    """One completed match from a player's perspective"""
    player_score: int
    opponent_score: int

    @property
    def won(self) -> bool:
        return self.player_score > self.opponent_score

    @property
    def score_difference(self) -> int:
        return abs(self.player_score - self.opponent_score)


@dataclass(frozen=True)
class HistoryAnalysis:
    """Advisory report over a player's score history"""
    patterns: List[SuspiciousPattern]
    risk_level: str
    recommendations: List[str]
    analyzed_matches: int


def _is_integer(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ScoreValidator:
    """Validates final score pairs against the rules of the game."""

    @staticmethod
    def validate(score_a, score_b) -> ScoreValidationResult:
        """
        Validate a candidate final score pair.

        Args:
            score_a: Player 1's final score
            score_b: Player 2's final score

        Returns:
            ScoreValidationResult with errors, warnings, winner and confidence
        """
        if not _is_integer(score_a) or not _is_integer(score_b):
            return ScoreValidationResult(
                is_valid=False,
                errors=["Scores must be whole numbers"],
                confidence=0
            )

        errors = []
        high = max(score_a, score_b)
        low = min(score_a, score_b)
        difference = high - low

        if low < 0:
            errors.append("Scores cannot be negative")

        if score_a == score_b:
            errors.append("Tie scores are not allowed")

        if high < ScoreRules.MINIMUM_WINNING_SCORE:
            errors.append(
                f"Winner must score at least {ScoreRules.MINIMUM_WINNING_SCORE} points"
            )
        elif difference < ScoreRules.MINIMUM_WIN_MARGIN:
            errors.append(
                f"Winner must win by at least {ScoreRules.MINIMUM_WIN_MARGIN} points"
            )

        if high > ScoreRules.MAXIMUM_REASONABLE_SCORE:
            errors.append(
                f"Score seems unreasonably high (maximum {ScoreRules.MAXIMUM_REASONABLE_SCORE} points)"
            )

        patterns = ScoreValidator.detect_patterns(score_a, score_b)

        if score_a > score_b:
            winner = "player1"
        elif score_b > score_a:
            winner = "player2"
        else:
            winner = None

        return ScoreValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=[pattern.description for pattern in patterns],
            suspicious_patterns=patterns,
            winner=winner,
            score_difference=difference,
            confidence=ScoreValidator.calculate_confidence(patterns)
        )

    @staticmethod
    def validate_or_raise(score_a, score_b) -> ScoreValidationResult:
        """
        Validate a score pair and raise if it is not legitimate.

        Raises:
            ValidationError: With every rule the scores violate
        """
        result = ScoreValidator.validate(score_a, score_b)
        if not result.is_valid:
            raise ValidationError(result.errors, field="scores")
        return result

    @staticmethod
    def detect_patterns(score_a: int, score_b: int) -> List[SuspiciousPattern]:
        """Find legal-but-unusual patterns in a score pair"""
        patterns = []
        high = max(score_a, score_b)
        low = min(score_a, score_b)

        if _has_identical_digits(score_a) and _has_identical_digits(score_b):
            patterns.append(SuspiciousPattern(
                "identical_digits",
                "Scores contain identical digit patterns",
                "low"
            ))

        if (score_a % 5 == 0 and score_b % 5 == 0
                and high > ScoreHeuristics.ROUND_NUMBER_THRESHOLD):
            patterns.append(SuspiciousPattern(
                "round_numbers",
                "Scores are suspiciously round numbers",
                "low"
            ))

        if high - low > ScoreHeuristics.EXTREME_DIFFERENCE:
            patterns.append(SuspiciousPattern(
                "extreme_difference",
                "This is an unusually large score difference",
                "medium"
            ))

        if low == 0 and high >= ScoreRules.MINIMUM_WINNING_SCORE:
            patterns.append(SuspiciousPattern(
                "shutout",
                "Shutouts are rare",
                "low"
            ))

        return patterns

    @staticmethod
    def calculate_confidence(patterns: Sequence[SuspiciousPattern]) -> int:
        """Start from full confidence and deduct a penalty per pattern severity"""
        confidence = ScoreHeuristics.BASE_CONFIDENCE
        for pattern in patterns:
            confidence -= ScoreHeuristics.SEVERITY_PENALTIES.get(pattern.severity, 0)
        return max(0, min(ScoreHeuristics.BASE_CONFIDENCE, confidence))

    @staticmethod
    def analyze_score_history(records: Sequence[ScoreHistoryRecord]) -> HistoryAnalysis:
        """
        Look for advisory patterns across a player's completed matches.

        The report is for manual review only and never blocks a result.
        """
        if not records:
            return HistoryAnalysis([], "low", [], 0)

        patterns = []
        risk_level = "low"

        win_rate = sum(1 for record in records if record.won) / len(records)
        if win_rate > HistoryHeuristics.HIGH_WIN_RATE:
            patterns.append(SuspiciousPattern(
                "high_win_rate", "Unusually high win rate", "medium"
            ))
            risk_level = "medium"

        average_margin = sum(record.score_difference for record in records) / len(records)
        if average_margin > HistoryHeuristics.HIGH_AVERAGE_MARGIN:
            patterns.append(SuspiciousPattern(
                "high_avg_difference", "Consistently large score differences", "low"
            ))

        frequency = Counter((record.player_score, record.opponent_score) for record in records)
        if any(count > HistoryHeuristics.REPEATED_SCORE_COUNT for count in frequency.values()):
            patterns.append(SuspiciousPattern(
                "repeated_scores", "Same exact scores reported multiple times", "high"
            ))
            risk_level = "high"

        if not patterns:
            recommendations = ["Score patterns appear normal"]
        else:
            recommendations = ["Consider reviewing recent match results for accuracy"]
            if risk_level == "high":
                recommendations.append("Manual review recommended for recent score submissions")

        return HistoryAnalysis(patterns, risk_level, recommendations, len(records))


def _has_identical_digits(score: int) -> bool:
    """True for two-digit scores made of one repeated digit (11, 22, 33...)"""
    digits = str(score)
    return len(digits) == 2 and digits[0] == digits[1]
