"""
Player Stats Aggregation Service

Recomputes a player's record (wins, losses, current and best win streak)
deterministically from the full set of the player's completed matches. This
is the only computation of player statistics: match completion triggers a
resync instead of adjusting counters in place.

Resync for one player is single-flight behind a per-player lock and writes
its result once, at the end, so a failure mid-computation leaves the prior
record intact and retryable.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from tracker.config import Config
from tracker.data_models.stats import (
    StatsCounters, ResyncResult, FieldDiscrepancy, StatsCheckReport
)
from tracker.constants import StatsConstants
from tracker.database.models import Match, MatchStatus, PlayerStats
from tracker.operations.score_validator import (
    HistoryAnalysis, ScoreHistoryRecord, ScoreValidator
)
from tracker.services.base import BaseService
from tracker.utils.exceptions import NotFoundError
from tracker.utils.logger import setup_logger
from tracker.utils.timestamps import EPOCH, as_naive_utc, utcnow

logger = setup_logger(__name__)


def _chronological_key(match: Match):
    """Oldest completion first; undated matches sort as the epoch, ties by id"""
    completed = as_naive_utc(match.completed_date) or EPOCH
    return (completed, match.id)


def _unique_chronological(matches: Iterable[Match]) -> List[Match]:
    """Drop repeated match ids and order the rest oldest first"""
    unique = {}
    for match in matches:
        unique.setdefault(match.id, match)
    return sorted(unique.values(), key=_chronological_key)


def _is_winner(player_id: str, match: Match) -> Optional[bool]:
    """
    Decide whether the player won a completed match.

    Uses ``winner_id`` when present. Legacy records without it fall back to
    the scores and then to ``loser_id``. Returns None when undecidable.
    """
    if match.winner_id:
        return match.winner_id == player_id

    player_score = match.score_for(player_id)
    opponent_id = match.player2_id if player_id == match.player1_id else match.player1_id
    opponent_score = match.score_for(opponent_id)
    if player_score is not None and player_score != opponent_score:
        return player_score > opponent_score

    if match.loser_id:
        return match.loser_id != player_id
    return None


class StatsAggregator(BaseService):
    """Derives and caches per-player statistics from completed matches."""

    def __init__(self, database):
        super().__init__(database)
        # Shared with every other aggregator on the same database
        self._player_locks: Dict[str, asyncio.Lock] = database.resync_locks

    @staticmethod
    def compute_player_stats(player_id: str, matches: Iterable[Match]) -> StatsCounters:
        """
        Calculate a player's counters from their completed matches.

        Matches are deduplicated by id, then walked oldest to newest keeping a
        running streak. The running streak left after the walk is the
        player's current streak as of their most recent completed match.

        Args:
            player_id: Player the stats are for
            matches: Completed matches the player took part in, possibly
                     containing the same match more than once

        Returns:
            StatsCounters for the player
        """
        history = _unique_chronological(matches)

        total_wins = 0
        running_streak = 0
        max_win_streak = 0

        for match in history:
            won = _is_winner(player_id, match)
            if won is None:
                logger.warning(f"Unable to determine winner of Match {match.id}, counting as not won")

            if won:
                total_wins += 1
                running_streak += 1
                max_win_streak = max(max_win_streak, running_streak)
            else:
                running_streak = 0  # Reset streak on loss

        games_played = len(history)
        return StatsCounters(
            player_id=player_id,
            games_played=games_played,
            total_wins=total_wins,
            total_losses=games_played - total_wins,
            win_streak=running_streak,
            max_win_streak=max_win_streak
        )

    async def resync(self, player_id: str) -> PlayerStats:
        """
        Recompute and persist a player's stats from their match history.

        Concurrent resyncs for the same player are serialized; different
        players proceed in parallel. A player with no completed matches still
        gets an all-zero record.

        Args:
            player_id: Player to resync

        Returns:
            The persisted PlayerStats record
        """
        async with self._player_locks[player_id]:
            logger.info(f"Starting stats sync for player {player_id}")

            matches = await self.db.get_completed_matches_for_player(player_id)
            counters = self.compute_player_stats(player_id, matches)

            stats = PlayerStats(
                player_id=player_id,
                last_synced_at=utcnow(),
                last_synced_match_count=counters.games_played,
                **counters.as_dict()
            )
            await self.db.save_player_stats(stats)

            logger.info(
                f"Stats synced for player {player_id}: "
                f"played={stats.games_played}, wins={stats.total_wins}, "
                f"losses={stats.total_losses}, streak={stats.win_streak}, "
                f"best={stats.max_win_streak}"
            )
            return stats

    async def resync_all(self) -> List[ResyncResult]:
        """
        Resync every player who appears in any completed match.

        Each player is resynced independently with the transient-error retry
        policy. A failure for one player is recorded and the batch continues.

        Returns:
            One ResyncResult per player
        """
        logger.info("Starting bulk stats sync for all players")
        player_ids = await self.execute_with_retry(
            self.db.list_distinct_players_with_completed_matches
        )
        logger.info(f"Found {len(player_ids)} unique players to sync")

        results = []
        for count, player_id in enumerate(player_ids, start=1):
            try:
                await self.execute_with_retry(lambda: self.resync(player_id))
                results.append(ResyncResult(player_id=player_id, success=True))
            except Exception as e:
                logger.error(f"Failed to sync stats for player {player_id}: {e}", exc_info=True)
                results.append(ResyncResult(player_id=player_id, success=False, error=str(e)))

            if count % Config.RESYNC_PROGRESS_INTERVAL == 0:
                logger.info(f"Synced {count} players...")

        succeeded = sum(1 for result in results if result.success)
        logger.info(f"Bulk sync completed. {succeeded}/{len(results)} players synced successfully")
        return results

    async def sync_match_players(self, match_id: int) -> Dict[str, PlayerStats]:
        """
        Resync both participants of a completed match.

        Returns:
            Mapping of player id to their new stats, empty if the match is
            not completed

        Raises:
            NotFoundError: If the match does not exist
        """
        match = await self.db.get_match(match_id)
        if match.status != MatchStatus.COMPLETED:
            logger.info(f"Match {match_id} is not completed, skipping stats sync")
            return {}

        player1_stats, player2_stats = await asyncio.gather(
            self.resync(match.player1_id),
            self.resync(match.player2_id)
        )
        return {
            match.player1_id: player1_stats,
            match.player2_id: player2_stats,
        }

    async def get_player_stats(self, player_id: str) -> PlayerStats:
        """
        Get a player's cached stats record.

        Raises:
            NotFoundError: If the player's stats were never synced
        """
        stats = await self.db.get_player_stats(player_id)
        if stats is None:
            raise NotFoundError("Player stats", player_id)
        return stats

    async def list_player_stats(
        self,
        order_by_wins: bool = True,
        limit: Optional[int] = None
    ) -> List[PlayerStats]:
        """
        Get cached stats for every synced player.

        Args:
            order_by_wins: Leaderboard order (most wins first), otherwise by player id
            limit: Maximum number of players, all when None
        """
        return await self.db.list_player_stats(order_by_wins=order_by_wins, limit=limit)

    async def get_leaderboard_preview(
        self,
        limit: int = StatsConstants.LEADERBOARD_PREVIEW_SIZE
    ) -> List[PlayerStats]:
        """Get the top players by total wins"""
        return await self.list_player_stats(order_by_wins=True, limit=limit)

    async def get_score_history(self, player_id: str) -> List[ScoreHistoryRecord]:
        """Get a player's completed matches, oldest first, as their own score against the opponent's"""
        matches = await self.db.get_completed_matches_for_player(player_id)

        records = []
        for match in _unique_chronological(matches):
            opponent_id = match.player2_id if player_id == match.player1_id else match.player1_id
            records.append(ScoreHistoryRecord(
                player_score=match.score_for(player_id),
                opponent_score=match.score_for(opponent_id)
            ))
        return records

    async def analyze_player_history(self, player_id: str) -> HistoryAnalysis:
        """
        Run the advisory score-history analysis over a player's stored matches.

        The report is for manual review only and never changes any record.
        """
        records = await self.get_score_history(player_id)
        analysis = ScoreValidator.analyze_score_history(records)
        if analysis.risk_level != "low":
            logger.warning(
                f"Score history for player {player_id} flagged as {analysis.risk_level} risk: "
                f"{[pattern.type for pattern in analysis.patterns]}"
            )
        return analysis

    async def check_player_stats(self, player_id: str) -> StatsCheckReport:
        """
        Compare a player's cached stats with a fresh computation.

        Nothing is persisted; use resync to repair discrepancies.
        """
        cached = await self.db.get_player_stats(player_id)
        matches = await self.db.get_completed_matches_for_player(player_id)
        calculated = self.compute_player_stats(player_id, matches)

        current = cached.counters() if cached else {}
        discrepancies = {}
        for field_name, value in calculated.as_dict().items():
            if current.get(field_name) != value:
                discrepancies[field_name] = FieldDiscrepancy(
                    current=current.get(field_name),
                    calculated=value
                )

        if discrepancies:
            logger.warning(f"Stats for player {player_id} out of sync: {sorted(discrepancies)}")

        return StatsCheckReport(
            player_id=player_id,
            match_count=calculated.games_played,
            calculated=calculated,
            discrepancies=discrepancies
        )
