"""
Match State Machine

Owns the lifecycle of a single match record:

    scheduled   -> in_progress | cancelled
    in_progress -> completed   | cancelled
    completed, cancelled are terminal

Every transition is an atomic read-modify-write against the stored record:
the match is read, checked and written with a compare-and-swap on its
version, and exactly one audit entry is appended in the same transaction.
A transition racing another on the same version fails with ConflictError
and leaves nothing behind.

After a completion commits, both participants' stats are resynced from
their match history and session subscribers are notified.
"""

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from tracker.config import Config
from tracker.data_models.context import ActorContext, TransitionPayload
from tracker.database.models import Match, MatchStatus
from tracker.operations.score_validator import ScoreValidator
from tracker.services.audit_trail import AuditTrail
from tracker.services.base import BaseService
from tracker.services.stats_aggregator import StatsAggregator
from tracker.services.subscriptions import SubscriptionManager
from tracker.utils.exceptions import (
    AuthorizationError, IllegalTransitionError, StaleMatchError, ValidationError
)
from tracker.utils.logger import setup_logger
from tracker.utils.timestamps import utcnow

logger = setup_logger(__name__)


TRANSITIONS: Dict[MatchStatus, Tuple[MatchStatus, ...]] = {
    MatchStatus.SCHEDULED: (MatchStatus.IN_PROGRESS, MatchStatus.CANCELLED),
    MatchStatus.IN_PROGRESS: (MatchStatus.COMPLETED, MatchStatus.CANCELLED),
    MatchStatus.COMPLETED: (),
    MatchStatus.CANCELLED: (),
}

TRANSITION_ACTIONS = {
    MatchStatus.IN_PROGRESS: "start the match",
    MatchStatus.COMPLETED: "record the final score",
    MatchStatus.CANCELLED: "cancel the match",
}

MAX_LOCATION_LENGTH = 100


class MatchStateMachine(BaseService):
    """
    Applies lifecycle transitions to matches.

    Collaborators are the record repository, the audit trail written inside
    each transition, and the stats aggregator triggered after completion.
    """

    def __init__(
        self,
        database,
        audit_trail: Optional[AuditTrail] = None,
        stats_aggregator: Optional[StatsAggregator] = None,
        allow_direct_completion: Optional[bool] = None
    ):
        super().__init__(database)
        self.audit_trail = audit_trail or AuditTrail(database)
        self.stats_aggregator = stats_aggregator or StatsAggregator(database)
        if allow_direct_completion is None:
            allow_direct_completion = Config.ALLOW_DIRECT_COMPLETION
        self.allow_direct_completion = allow_direct_completion
        self._subscription_managers: List[SubscriptionManager] = []
        self.logger = logger

    # ============================================================================
    # Subscription Wiring
    # ============================================================================

    def attach_subscriptions(self, manager: SubscriptionManager) -> None:
        """Deliver committed match updates to a session's subscriptions"""
        if manager not in self._subscription_managers:
            self._subscription_managers.append(manager)

    def detach_subscriptions(self, manager: SubscriptionManager) -> None:
        if manager in self._subscription_managers:
            self._subscription_managers.remove(manager)

    # ============================================================================
    # Transition Table
    # ============================================================================

    def allowed_transitions(self, status: MatchStatus) -> Tuple[MatchStatus, ...]:
        """Get the statuses a match in ``status`` may move to"""
        allowed = TRANSITIONS[status]
        if self.allow_direct_completion and status == MatchStatus.SCHEDULED:
            allowed = allowed + (MatchStatus.COMPLETED,)
        return allowed

    def can_transition(self, from_status: MatchStatus, to_status: MatchStatus) -> bool:
        return to_status in self.allowed_transitions(from_status)

    # ============================================================================
    # Match Creation
    # ============================================================================

    async def create_match(
        self,
        context: ActorContext,
        opponent_id: str,
        location: str,
        scheduled_date: Optional[datetime] = None,
        notes: Optional[str] = None
    ) -> Match:
        """
        Schedule a match between the actor and an opponent.

        The actor becomes player 1. The match starts in the scheduled state
        with 0-0 scores and version 1.

        Raises:
            ValidationError: If the players are not distinct or the location
                             is missing
        """
        errors = []
        if not opponent_id:
            errors.append("Opponent is required")
        elif opponent_id == context.actor_id:
            errors.append("Players cannot be the same")

        if not location or not location.strip():
            errors.append("Location is required")
        elif len(location) > MAX_LOCATION_LENGTH:
            errors.append(f"Location cannot exceed {MAX_LOCATION_LENGTH} characters")

        if errors:
            raise ValidationError(errors, field="match")

        match = await self.db.create_match(
            player1_id=context.actor_id,
            player2_id=opponent_id,
            location=location.strip(),
            scheduled_date=scheduled_date,
            notes=notes,
            created_by=context.actor_id
        )
        self.logger.info(f"Match {match.id} scheduled by {context.actor_id} against {opponent_id}")
        return match

    # ============================================================================
    # Transitions
    # ============================================================================

    async def apply_transition(
        self,
        match_id: int,
        target_status: Union[MatchStatus, str],
        context: ActorContext,
        payload: Optional[TransitionPayload] = None
    ) -> Match:
        """
        Move a match to ``target_status``.

        Args:
            match_id: Match to transition
            target_status: Desired status
            context: Actor performing the transition
            payload: Final scores for completion, optional status/version
                     preconditions and notes

        Returns:
            The match as stored after the transition

        Raises:
            NotFoundError: If the match does not exist
            ConflictError: If the transition is illegal or the stored match
                           no longer matches the caller's preconditions
            AuthorizationError: If the actor is not a participant
            ValidationError: If completion scores are missing or invalid
        """
        payload = payload or TransitionPayload()
        target_status = self._coerce_status(target_status)

        # Each attempt re-reads the match inside a fresh transaction
        previous_status = await self.execute_with_retry(
            lambda: self._transition_once(match_id, target_status, context, payload)
        )

        # Reload match with score history for return
        updated = await self.db.get_match(match_id)
        self.logger.info(
            f"Match {match_id}: {previous_status.value} -> {target_status.value} "
            f"by {context.actor_id} (version {updated.version})"
        )

        if target_status == MatchStatus.COMPLETED:
            await self._resync_participants(updated)

        await self._publish(updated)
        return updated

    async def start_match(
        self,
        match_id: int,
        context: ActorContext,
        expected_version: Optional[int] = None
    ) -> Match:
        """Move a scheduled match to in progress"""
        return await self.apply_transition(
            match_id,
            MatchStatus.IN_PROGRESS,
            context,
            TransitionPayload(expected_version=expected_version)
        )

    async def complete_match(
        self,
        match_id: int,
        context: ActorContext,
        player1_score: int,
        player2_score: int,
        expected_version: Optional[int] = None,
        notes: Optional[str] = None
    ) -> Match:
        """Record the final score of a match in progress"""
        return await self.apply_transition(
            match_id,
            MatchStatus.COMPLETED,
            context,
            TransitionPayload(
                scores=(player1_score, player2_score),
                expected_version=expected_version,
                notes=notes
            )
        )

    async def cancel_match(
        self,
        match_id: int,
        context: ActorContext,
        notes: Optional[str] = None
    ) -> Match:
        """Cancel a scheduled or in-progress match"""
        return await self.apply_transition(
            match_id,
            MatchStatus.CANCELLED,
            context,
            TransitionPayload(notes=notes)
        )

    async def _transition_once(
        self,
        match_id: int,
        target_status: MatchStatus,
        context: ActorContext,
        payload: TransitionPayload
    ) -> MatchStatus:
        """
        Read, check and write one transition in a single transaction.

        Returns:
            The status the match had before the transition
        """
        async with self.db.transaction() as session:
            match = await self.db.get_match(match_id, session=session)

            self._check_preconditions(match, payload)
            self._check_transition(match, target_status)
            self._check_participant(match, context, target_status)

            new_scores, changes, confidence = self._build_changes(match, target_status, context, payload)
            previous_scores = (match.player1_score, match.player2_score)
            previous_status = match.status

            await self.db.save_match(match, match.version, changes, session=session)
            await self.audit_trail.append(
                match_id=match_id,
                actor_id=context.actor_id,
                previous_scores=previous_scores,
                new_scores=new_scores,
                previous_status=previous_status,
                new_status=target_status,
                session=session,
                confidence=confidence
            )

        return previous_status

    # ============================================================================
    # Checks
    # ============================================================================

    @staticmethod
    def _coerce_status(status: Union[MatchStatus, str]) -> MatchStatus:
        if isinstance(status, MatchStatus):
            return status
        try:
            return MatchStatus(status)
        except ValueError:
            raise ValidationError([f"Unknown match status '{status}'"], field="status")

    @staticmethod
    def _check_preconditions(match: Match, payload: TransitionPayload) -> None:
        """Reject requests built from a stale copy of the match"""
        if payload.expected_status is not None and payload.expected_status != match.status:
            raise StaleMatchError(
                match.id,
                f"status '{payload.expected_status.value}'",
                f"status '{match.status.value}'"
            )
        if payload.expected_version is not None and payload.expected_version != match.version:
            raise StaleMatchError(
                match.id,
                f"version {payload.expected_version}",
                f"version {match.version}"
            )

    def _check_transition(self, match: Match, target_status: MatchStatus) -> None:
        if not self.can_transition(match.status, target_status):
            raise IllegalTransitionError(match.id, match.status.value, target_status.value)

    @staticmethod
    def _check_participant(match: Match, context: ActorContext, target_status: MatchStatus) -> None:
        if not match.is_participant(context.actor_id):
            raise AuthorizationError(
                context.actor_id,
                match.id,
                TRANSITION_ACTIONS.get(target_status, "change this match")
            )

    @staticmethod
    def _build_changes(
        match: Match,
        target_status: MatchStatus,
        context: ActorContext,
        payload: TransitionPayload
    ) -> Tuple[Tuple[int, int], Dict, Optional[int]]:
        """
        Work out the column changes for a transition.

        Returns:
            Tuple of (new_scores, changes, confidence). Confidence is only
            set for completions.
        """
        now = utcnow()
        changes = {
            'status': target_status,
            'last_updated_by': context.actor_id,
            'updated_at': now,
        }
        if payload.notes is not None:
            changes['notes'] = payload.notes

        if target_status != MatchStatus.COMPLETED:
            return (match.player1_score, match.player2_score), changes, None

        if payload.scores is None:
            raise ValidationError(["Final scores are required to complete a match"], field="scores")
        if len(payload.scores) != 2:
            raise ValidationError(["Exactly two scores are required"], field="scores")

        player1_score, player2_score = payload.scores
        validation = ScoreValidator.validate_or_raise(player1_score, player2_score)

        if validation.winner == "player1":
            winner_id, loser_id = match.player1_id, match.player2_id
        else:
            winner_id, loser_id = match.player2_id, match.player1_id

        changes.update({
            'player1_score': player1_score,
            'player2_score': player2_score,
            'winner_id': winner_id,
            'loser_id': loser_id,
            'completed_date': now,
        })
        return (player1_score, player2_score), changes, validation.confidence

    # ============================================================================
    # Post-Commit Side Effects
    # ============================================================================

    async def _resync_participants(self, match: Match) -> None:
        """
        Recompute both participants' stats after a completion commits.

        The transition stands even if a resync fails; the stats are rebuilt by
        the next resync for that player.
        """
        self.logger.info(f"Match {match.id} completed, syncing player stats...")
        results = await asyncio.gather(
            *(
                self.stats_aggregator.execute_with_retry(
                    lambda player_id=player_id: self.stats_aggregator.resync(player_id)
                )
                for player_id in match.participant_ids
            ),
            return_exceptions=True
        )
        for player_id, result in zip(match.participant_ids, results):
            if isinstance(result, Exception):
                self.logger.error(
                    f"Stats sync failed for player {player_id} after Match {match.id}: {result}",
                    exc_info=result
                )

    async def _publish(self, match: Match) -> None:
        for manager in list(self._subscription_managers):
            await manager.publish(match)
