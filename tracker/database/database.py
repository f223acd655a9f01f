import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from sqlalchemy import select, update, union
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, InterfaceError, TimeoutError as PoolTimeoutError

from tracker.config import Config
from tracker.constants import StatsConstants
from tracker.database.models import Base, Match, MatchStatus, AuditEntry, PlayerStats
from tracker.utils.exceptions import NotFoundError, StaleMatchError, TransientStoreError
from tracker.utils.logger import setup_logger
from tracker.utils.timestamps import EPOCH, as_naive_utc, utcnow

class Database:
    """
    Record repository for matches, audit entries and cached player stats.

    Store I/O failures surface as TransientStoreError; lost write races
    surface as ConflictError subclasses and are never retried here.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = Config.get_async_database_url(database_url)
        self.engine = None
        self.async_session = None
        # Per-player resync locks shared by every service on this database.
        # Note: one lock is kept per player ever resynced and never pruned.
        self.resync_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        self.engine = create_async_engine(
            self.database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # Create all tables
        with self._store_errors("initialize"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. The caller passes the yielded
        session to every participating operation.

        Usage:
            async with db.transaction() as session:
                match = await db.get_match(match_id, session=session)
                await db.save_match(match, match.version, changes, session=session)
                await db.append_audit_entry(entry, session=session)
                # Both writes commit together here
        """
        async with self.async_session() as session:
            try:
                yield session
                with self._store_errors("commit"):
                    await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new session.
        """
        if session:
            # If a session is provided, we do not manage its lifecycle
            yield session
        else:
            async with self.get_session() as new_session:
                yield new_session

    @contextmanager
    def _store_errors(self, operation: str):
        """Translate driver-level I/O failures into TransientStoreError"""
        try:
            yield
        except (OperationalError, InterfaceError, PoolTimeoutError) as e:
            self.logger.warning(f"Transient store failure during {operation}: {e}")
            raise TransientStoreError(operation, str(e)) from e

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()

    # ============================================================================
    # Match Operations
    # ============================================================================

    async def create_match(
        self,
        player1_id: str,
        player2_id: str,
        location: Optional[str] = None,
        scheduled_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> Match:
        """Insert a new match in the scheduled state"""
        now = utcnow()
        async with self.get_session() as session:
            with self._store_errors("create_match"):
                match = Match(
                    player1_id=player1_id,
                    player2_id=player2_id,
                    player1_score=0,
                    player2_score=0,
                    status=MatchStatus.SCHEDULED,
                    scheduled_date=scheduled_date,
                    location=location,
                    notes=notes,
                    created_by=created_by,
                    last_updated_by=created_by,
                    version=1,
                    created_at=now,
                    updated_at=now
                )
                session.add(match)
                await session.commit()
                match_id = match.id

        return await self.get_match(match_id)

    async def get_match(self, match_id: int, session: Optional[AsyncSession] = None) -> Match:
        """
        Retrieve a match with its score update history loaded.

        Raises:
            NotFoundError: If no match has this ID
        """
        async with self._get_session_context(session) as s:
            with self._store_errors("get_match"):
                result = await s.execute(
                    select(Match)
                    .options(selectinload(Match.score_update_history))
                    .where(Match.id == match_id)
                )
                match = result.scalar_one_or_none()

        if not match:
            raise NotFoundError("Match", match_id)
        return match

    async def save_match(
        self,
        match: Match,
        expected_version: int,
        changes: Dict[str, Any],
        session: Optional[AsyncSession] = None
    ) -> Match:
        """
        Write changes to a match with a compare-and-swap on its version.

        The UPDATE only matches the row while it still carries
        ``expected_version``, so of two writers racing on the same version
        exactly one succeeds.

        Args:
            match: Match being written
            expected_version: Version the caller read the match at
            changes: Column values to write
            session: Optional session for transaction participation

        Returns:
            The match as stored after the write

        Raises:
            NotFoundError: If the match does not exist
            StaleMatchError: If the stored version no longer matches
        """
        async with self._get_session_context(session) as s:
            with self._store_errors("save_match"):
                values = dict(changes)
                values['version'] = expected_version + 1
                values.setdefault('updated_at', utcnow())

                result = await s.execute(
                    update(Match)
                    .where(
                        Match.id == match.id,
                        Match.version == expected_version
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount == 0:
                    # No rows updated - determine why
                    check_result = await s.execute(
                        select(Match.version).where(Match.id == match.id)
                    )
                    current_version = check_result.scalar_one_or_none()
                    if current_version is None:
                        raise NotFoundError("Match", match.id)
                    raise StaleMatchError(
                        match.id,
                        f"version {expected_version}",
                        f"version {current_version}"
                    )

                if not session:  # Only commit if we manage the session
                    await s.commit()

                saved = await s.get(Match, match.id, populate_existing=True)

        self.logger.debug(f"Saved Match {match.id} at version {expected_version + 1}")
        return saved

    async def get_completed_matches_for_player(self, player_id: str) -> List[Match]:
        """
        Fetch every completed match in which the player appears.

        The result is the concatenation of two partial result sets, one keyed
        by ``player1_id`` and one by ``player2_id``. Callers deduplicate by
        match id.
        """
        async with self.get_session() as session:
            with self._store_errors("get_completed_matches_for_player"):
                as_player1 = await session.execute(
                    select(Match).where(
                        Match.status == MatchStatus.COMPLETED,
                        Match.player1_id == player_id
                    )
                )
                as_player2 = await session.execute(
                    select(Match).where(
                        Match.status == MatchStatus.COMPLETED,
                        Match.player2_id == player_id
                    )
                )
                return list(as_player1.scalars().all()) + list(as_player2.scalars().all())

    async def list_distinct_players_with_completed_matches(self) -> List[str]:
        """Get every player id that appears on either side of a completed match"""
        async with self.get_session() as session:
            with self._store_errors("list_distinct_players_with_completed_matches"):
                player_ids = union(
                    select(Match.player1_id.label('player_id'))
                    .where(Match.status == MatchStatus.COMPLETED),
                    select(Match.player2_id.label('player_id'))
                    .where(Match.status == MatchStatus.COMPLETED)
                )
                result = await session.execute(player_ids)
                return sorted(row.player_id for row in result)

    async def get_upcoming_matches(self, player_id: str, limit: int = StatsConstants.DEFAULT_MATCH_LIST_LIMIT) -> List[Match]:
        """
        Get a player's scheduled matches, soonest first.

        Matches without a scheduled date sort last.
        """
        matches = await self._get_matches_for_player(
            player_id, MatchStatus.SCHEDULED,
            (Match.scheduled_date.is_(None), Match.scheduled_date.asc(), Match.id.asc()),
            limit, "get_upcoming_matches"
        )
        matches.sort(key=lambda match: (
            match.scheduled_date is None,
            as_naive_utc(match.scheduled_date) or EPOCH,
            match.id
        ))
        return matches[:limit]

    async def get_recent_matches(self, player_id: str, limit: int = StatsConstants.DEFAULT_MATCH_LIST_LIMIT) -> List[Match]:
        """Get a player's completed matches, most recently completed first"""
        matches = await self._get_matches_for_player(
            player_id, MatchStatus.COMPLETED,
            (Match.completed_date.desc(), Match.id.desc()),
            limit, "get_recent_matches"
        )
        matches.sort(
            key=lambda match: (as_naive_utc(match.completed_date) or EPOCH, match.id),
            reverse=True
        )
        return matches[:limit]

    async def _get_matches_for_player(
        self,
        player_id: str,
        status: MatchStatus,
        order_by: tuple,
        limit: int,
        operation: str
    ) -> List[Match]:
        """Run the player1 and player2 queries and merge them by match id"""
        async with self.get_session() as session:
            with self._store_errors(operation):
                merged = {}
                for player_column in (Match.player1_id, Match.player2_id):
                    result = await session.execute(
                        select(Match)
                        .where(Match.status == status, player_column == player_id)
                        .order_by(*order_by)
                        .limit(limit)
                    )
                    for match in result.scalars().all():
                        merged.setdefault(match.id, match)
                return list(merged.values())

    # ============================================================================
    # Player Stats Operations
    # ============================================================================

    async def save_player_stats(self, stats: PlayerStats) -> None:
        """
        Persist a player's stats record in a single write, replacing any prior one.

        Written as one INSERT ... ON CONFLICT DO UPDATE so two first-time
        writes for the same player cannot both try to insert.
        """
        values = {
            column.name: getattr(stats, column.name)
            for column in PlayerStats.__table__.columns
        }
        statement = sqlite_insert(PlayerStats).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[PlayerStats.player_id],
            set_={
                name: statement.excluded[name]
                for name in values if name != 'player_id'
            }
        )

        async with self.get_session() as session:
            with self._store_errors("save_player_stats"):
                await session.execute(statement)
                await session.commit()

    async def get_player_stats(self, player_id: str) -> Optional[PlayerStats]:
        """Get the cached stats record for a player, if one was ever synced"""
        async with self.get_session() as session:
            with self._store_errors("get_player_stats"):
                return await session.get(PlayerStats, player_id)

    async def list_player_stats(self, order_by_wins: bool = True, limit: Optional[int] = None) -> List[PlayerStats]:
        """
        Get cached stats records for every synced player.

        Args:
            order_by_wins: Most wins first (leaderboard order); otherwise by player id
            limit: Maximum number of records, all when None
        """
        query = select(PlayerStats)
        if order_by_wins:
            query = query.order_by(PlayerStats.total_wins.desc(), PlayerStats.player_id.asc())
        else:
            query = query.order_by(PlayerStats.player_id.asc())
        if limit is not None:
            query = query.limit(limit)

        async with self.get_session() as session:
            with self._store_errors("list_player_stats"):
                result = await session.execute(query)
                return list(result.scalars().all())

    # ============================================================================
    # Audit Entry Operations
    # ============================================================================

    async def append_audit_entry(self, entry: AuditEntry, session: AsyncSession) -> AuditEntry:
        """Add an audit entry inside the caller's transaction"""
        with self._store_errors("append_audit_entry"):
            session.add(entry)
            await session.flush()
        return entry

    async def get_audit_entries(self, match_id: int) -> List[AuditEntry]:
        """
        Get a match's audit entries in insertion order.

        Raises:
            NotFoundError: If no match has this ID
        """
        async with self.get_session() as session:
            with self._store_errors("get_audit_entries"):
                exists = await session.execute(
                    select(Match.id).where(Match.id == match_id)
                )
                if exists.scalar_one_or_none() is None:
                    raise NotFoundError("Match", match_id)

                result = await session.execute(
                    select(AuditEntry)
                    .where(AuditEntry.match_id == match_id)
                    .order_by(AuditEntry.id.asc())
                )
                return list(result.scalars().all())

    async def get_audit_entries_by_actor(self, actor_id: str, limit: int = 100) -> List[AuditEntry]:
        """Get the most recent audit entries written by an actor, newest first"""
        async with self.get_session() as session:
            with self._store_errors("get_audit_entries_by_actor"):
                result = await session.execute(
                    select(AuditEntry)
                    .where(AuditEntry.updated_by == actor_id)
                    .order_by(AuditEntry.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
