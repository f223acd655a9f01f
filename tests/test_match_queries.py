from datetime import datetime, timedelta

from conftest import ALICE, BOB, CAROL, play_match
from tracker.operations.match_state_machine import MatchStateMachine


def test_upcoming_matches_soonest_first_from_both_sides(run_with_db):
    start = datetime(2024, 6, 1, 18, 0)

    async def scenario(db):
        machine = MatchStateMachine(db)
        later = await machine.create_match(ALICE, "bob", "Rec room", scheduled_date=start + timedelta(days=2))
        sooner = await machine.create_match(CAROL, "alice", "Rec room", scheduled_date=start + timedelta(days=1))
        undated = await machine.create_match(ALICE, "dave", "Rec room")
        latest = await machine.create_match(BOB, "alice", "Rec room", scheduled_date=start + timedelta(days=3))

        started = await machine.create_match(ALICE, "carol", "Rec room", scheduled_date=start)
        await machine.start_match(started.id, ALICE)
        cancelled = await machine.create_match(ALICE, "carol", "Rec room", scheduled_date=start)
        await machine.cancel_match(cancelled.id, ALICE)
        await machine.create_match(BOB, "carol", "Rec room", scheduled_date=start)

        expected = [sooner.id, later.id, latest.id, undated.id]
        return (
            expected,
            await db.get_upcoming_matches("alice"),
            await db.get_upcoming_matches("alice", limit=2),
        )

    expected, upcoming, first_two = run_with_db(scenario)
    assert [match.id for match in upcoming] == expected
    assert [match.id for match in first_two] == expected[:2]
    assert all(match.is_participant("alice") for match in upcoming)


def test_recent_matches_latest_first_from_both_sides(run_with_db):
    async def scenario(db):
        machine = MatchStateMachine(db)
        first = await play_match(machine, ALICE, "bob", 21, 12)
        second = await play_match(machine, BOB, "alice", 21, 19)
        await play_match(machine, BOB, "carol", 21, 17)
        third = await play_match(machine, CAROL, "alice", 14, 21)
        await machine.create_match(ALICE, "bob", "Rec room")

        expected = [third.id, second.id, first.id]
        return (
            expected,
            await db.get_recent_matches("alice"),
            await db.get_recent_matches("alice", limit=2),
        )

    expected, recent, latest_two = run_with_db(scenario)
    assert [match.id for match in recent] == expected
    assert [match.id for match in latest_two] == expected[:2]


def test_player_without_matches_has_empty_lists(run_with_db):
    async def scenario(db):
        return await db.get_upcoming_matches("ghost"), await db.get_recent_matches("ghost")

    assert run_with_db(scenario) == ([], [])
