import asyncio

import pytest

from conftest import ALICE, BOB, CAROL, play_match
from tracker.data_models.context import ActorContext, TransitionPayload
from tracker.database.models import MatchStatus
from tracker.operations.match_state_machine import MatchStateMachine
from tracker.services.audit_trail import AuditTrail
from tracker.utils.exceptions import (
    AuthorizationError, ConflictError, IllegalTransitionError, NotFoundError,
    StaleMatchError, ValidationError
)


def test_create_match_starts_scheduled(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room", notes="Best of one")
        audit = await AuditTrail(db).read(match.id)
        return match, audit

    match, audit = run_with_db(scenario)
    assert match.status == MatchStatus.SCHEDULED
    assert match.player1_id == "alice"
    assert match.player2_id == "bob"
    assert (match.player1_score, match.player2_score) == (0, 0)
    assert match.version == 1
    assert match.winner_id is None
    assert match.created_by == "alice"
    assert audit == ()


@pytest.mark.parametrize("opponent, location", [
    ("alice", "Rec room"),
    ("bob", ""),
    ("bob", "   "),
    ("bob", "x" * 101),
])
def test_create_match_rejects_bad_input(run_with_db, opponent, location):
    async def scenario(db):
        await MatchStateMachine(db).create_match(ALICE, opponent, location=location)

    with pytest.raises(ValidationError):
        run_with_db(scenario)


def test_full_lifecycle_sets_winner_and_audits_each_step(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        started = await machine.start_match(match.id, BOB)
        completed = await machine.complete_match(match.id, ALICE, 18, 21)
        audit = await AuditTrail(db).read(match.id)
        return started, completed, audit

    started, completed, audit = run_with_db(scenario)

    assert started.status == MatchStatus.IN_PROGRESS
    assert started.version == 2
    assert started.last_updated_by == "bob"

    assert completed.status == MatchStatus.COMPLETED
    assert completed.version == 3
    assert (completed.player1_score, completed.player2_score) == (18, 21)
    assert completed.winner_id == "bob"
    assert completed.loser_id == "alice"
    assert completed.completed_date is not None
    assert completed.last_updated_by == "alice"
    assert len(completed.score_update_history) == 2

    assert [(record.previous_status, record.new_status) for record in audit] == [
        (MatchStatus.SCHEDULED, MatchStatus.IN_PROGRESS),
        (MatchStatus.IN_PROGRESS, MatchStatus.COMPLETED),
    ]
    assert audit[1].previous_scores == (0, 0)
    assert audit[1].new_scores == (18, 21)
    assert audit[1].updated_by == "alice"
    assert audit[1].confidence == 100
    assert audit[0].confidence is None


def test_completion_resyncs_both_players(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        await play_match(machine, ALICE, "bob", 21, 15)
        return await db.get_player_stats("alice"), await db.get_player_stats("bob")

    alice, bob = run_with_db(scenario)
    assert (alice.games_played, alice.total_wins, alice.total_losses) == (1, 1, 0)
    assert (alice.win_streak, alice.max_win_streak) == (1, 1)
    assert (bob.games_played, bob.total_wins, bob.total_losses) == (1, 0, 1)
    assert bob.win_streak == 0


def test_completed_to_in_progress_is_rejected_and_match_unchanged(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        completed = await play_match(machine, ALICE, "bob", 21, 19)
        with pytest.raises(IllegalTransitionError) as exc_info:
            await machine.apply_transition(completed.id, MatchStatus.IN_PROGRESS, ALICE)
        after = await db.get_match(completed.id)
        audit = await AuditTrail(db).read(completed.id)
        return completed, after, audit, exc_info.value

    before, after, audit, error = run_with_db(scenario)
    assert isinstance(error, ConflictError)
    assert error.from_status == "completed"
    assert error.to_status == "in_progress"
    assert after.to_dict() == before.to_dict()
    assert len(audit) == 2


@pytest.mark.parametrize("target", [MatchStatus.IN_PROGRESS, MatchStatus.COMPLETED, MatchStatus.SCHEDULED])
def test_cancelled_is_terminal(run_with_db, target):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.cancel_match(match.id, BOB, notes="Rained out")
        await machine.apply_transition(
            match.id, target, ALICE, TransitionPayload(scores=(21, 10))
        )

    with pytest.raises(IllegalTransitionError):
        run_with_db(scenario)


def test_cancel_in_progress_match(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.start_match(match.id, ALICE)
        return await machine.cancel_match(match.id, BOB, notes="Paddle broke")

    cancelled = run_with_db(scenario)
    assert cancelled.status == MatchStatus.CANCELLED
    assert cancelled.notes == "Paddle broke"
    assert cancelled.winner_id is None
    assert cancelled.completed_date is None


def test_direct_completion_rejected_by_default(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.complete_match(match.id, ALICE, 21, 10)

    with pytest.raises(IllegalTransitionError):
        run_with_db(scenario)


def test_direct_completion_when_enabled(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db, allow_direct_completion=True)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        return await machine.complete_match(match.id, ALICE, 21, 10)

    completed = run_with_db(scenario)
    assert completed.status == MatchStatus.COMPLETED
    assert completed.winner_id == "alice"


def test_non_participant_cannot_transition(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        with pytest.raises(AuthorizationError) as exc_info:
            await machine.start_match(match.id, CAROL)
        return exc_info.value, await db.get_match(match.id)

    error, match = run_with_db(scenario)
    assert error.actor_id == "carol"
    assert error.user_message == "❌ Only match participants can start the match."
    assert match.status == MatchStatus.SCHEDULED
    assert match.version == 1


def test_invalid_final_score_is_rejected(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.start_match(match.id, ALICE)
        with pytest.raises(ValidationError) as exc_info:
            await machine.complete_match(match.id, ALICE, 21, 20)
        return exc_info.value, await db.get_match(match.id)

    error, match = run_with_db(scenario)
    assert error.field == "scores"
    assert error.errors == ["Winner must win by at least 2 points"]
    assert match.status == MatchStatus.IN_PROGRESS
    assert (match.player1_score, match.player2_score) == (0, 0)
    assert match.version == 2


def test_completion_requires_scores(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.start_match(match.id, ALICE)
        await machine.apply_transition(match.id, "completed", ALICE)

    with pytest.raises(ValidationError) as exc_info:
        run_with_db(scenario)
    assert exc_info.value.field == "scores"


def test_unknown_status_is_rejected(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.apply_transition(match.id, "paused", ALICE)

    with pytest.raises(ValidationError) as exc_info:
        run_with_db(scenario)
    assert exc_info.value.field == "status"


def test_missing_match_raises_not_found(run_with_db):
    async def scenario(db):
        await MatchStateMachine(db).start_match(999, ALICE)

    with pytest.raises(NotFoundError):
        run_with_db(scenario)


def test_stale_expected_version_conflicts(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.start_match(match.id, ALICE, expected_version=1)
        with pytest.raises(StaleMatchError):
            await machine.complete_match(match.id, BOB, 21, 11, expected_version=1)
        return await db.get_match(match.id)

    match = run_with_db(scenario)
    assert match.status == MatchStatus.IN_PROGRESS
    assert match.version == 2


def test_stale_expected_status_conflicts(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.apply_transition(
            match.id,
            MatchStatus.CANCELLED,
            ALICE,
            TransitionPayload(expected_status=MatchStatus.IN_PROGRESS)
        )

    with pytest.raises(StaleMatchError):
        run_with_db(scenario)


def test_save_match_rejects_stale_version(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.start_match(match.id, ALICE)
        with pytest.raises(StaleMatchError):
            await db.save_match(match, match.version, {'notes': 'overwrite'})
        return await db.get_match(match.id)

    match = run_with_db(scenario)
    assert match.notes is None
    assert match.version == 2


def test_simultaneous_completions_only_one_succeeds(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        match = await machine.create_match(ALICE, "bob", location="Rec room")
        await machine.start_match(match.id, ALICE)

        results = await asyncio.gather(
            machine.complete_match(match.id, ALICE, 21, 17, expected_version=2),
            machine.complete_match(match.id, BOB, 15, 21, expected_version=2),
            return_exceptions=True
        )
        audit = await AuditTrail(db).read(match.id)
        return results, audit, await db.get_match(match.id)

    results, audit, match = run_with_db(scenario)

    successes = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], ConflictError)

    completions = [record for record in audit if record.new_status == MatchStatus.COMPLETED]
    assert len(completions) == 1
    assert match.version == 3
    assert (match.player1_score, match.player2_score) == completions[0].new_scores


def test_actor_context_requires_identity():
    with pytest.raises(ValueError):
        ActorContext("")
