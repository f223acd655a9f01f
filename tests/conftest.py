import asyncio
import os

import pytest

# Keep test runs from writing dated log files
os.environ.setdefault('LOG_TO_FILE', 'False')

from tracker.config import Config
from tracker.data_models.context import ActorContext
from tracker.database.database import Database
from tracker.operations.match_state_machine import MatchStateMachine


ALICE = ActorContext("alice")
BOB = ActorContext("bob")
CAROL = ActorContext("carol")


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(Config, 'STORE_RETRY_BASE_DELAY', 0)
    monkeypatch.setattr(Config, 'ALLOW_DIRECT_COMPLETION', False)


@pytest.fixture()
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'tracker.db'}"


@pytest.fixture()
def run_with_db(database_url):
    """Run ``scenario(db)`` on a fresh file-backed database inside one event loop"""
    def runner(scenario):
        async def wrapper():
            db = Database(database_url)
            await db.initialize()
            try:
                return await scenario(db)
            finally:
                await db.close()
        return asyncio.run(wrapper())
    return runner


async def play_match(machine: MatchStateMachine, player1: ActorContext, player2_id: str,
                     player1_score: int, player2_score: int):
    """Schedule, start and complete a match in one go"""
    match = await machine.create_match(player1, player2_id, location="Rec room")
    await machine.start_match(match.id, player1)
    return await machine.complete_match(match.id, player1, player1_score, player2_score)
