"""
Audit Trail Service

Append-only, per-match log of every score and status change, kept for
dispute resolution. Entries are written by the match state machine inside the
same transaction as the change they describe and are never edited or removed.

The log is not an input to player statistics; those are derived from match
status and winner fields.
"""

from collections import Counter
from typing import Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from tracker.constants import AuditConstants
from tracker.data_models.audit import AuditRecord, AuditSummary, LowConfidenceEntry
from tracker.database.models import AuditEntry, MatchStatus
from tracker.services.base import BaseService
from tracker.utils.logger import setup_logger
from tracker.utils.timestamps import utcnow

logger = setup_logger(__name__)


class AuditTrail(BaseService):
    """Append and read the per-match audit log."""

    async def append(
        self,
        match_id: int,
        actor_id: str,
        previous_scores: Tuple[int, int],
        new_scores: Tuple[int, int],
        previous_status: MatchStatus,
        new_status: MatchStatus,
        session: AsyncSession,
        confidence: Optional[int] = None
    ) -> AuditRecord:
        """
        Append one entry with the before/after snapshot of a change.

        Only the match state machine calls this, inside the transaction that
        writes the change, so a rolled back change leaves no entry behind.
        """
        entry = AuditEntry(
            match_id=match_id,
            timestamp=utcnow(),
            updated_by=actor_id,
            previous_player1_score=previous_scores[0],
            previous_player2_score=previous_scores[1],
            new_player1_score=new_scores[0],
            new_player2_score=new_scores[1],
            previous_status=previous_status,
            new_status=new_status,
            confidence=confidence
        )
        await self.db.append_audit_entry(entry, session=session)

        logger.debug(
            f"Audit entry for Match {match_id}: {previous_status.value} -> {new_status.value} by {actor_id}"
        )
        return self._to_record(entry)

    async def read(self, match_id: int) -> Tuple[AuditRecord, ...]:
        """
        Get a match's audit log in insertion order.

        Raises:
            NotFoundError: If the match does not exist
        """
        entries = await self.db.get_audit_entries(match_id)
        return tuple(self._to_record(entry) for entry in entries)

    async def read_by_actor(
        self,
        actor_id: str,
        limit: int = AuditConstants.DEFAULT_ACTOR_HISTORY_LIMIT
    ) -> Tuple[AuditRecord, ...]:
        """Get the most recent entries written by one actor, newest first"""
        entries = await self.db.get_audit_entries_by_actor(actor_id, limit=limit)
        return tuple(self._to_record(entry) for entry in entries)

    @staticmethod
    def summarize(records: Iterable[AuditRecord]) -> AuditSummary:
        """
        Build an administrative summary of a set of audit records.

        Completion entries whose recorded confidence is below the review
        threshold are listed for manual review.
        """
        records = list(records)
        if not records:
            return AuditSummary()

        score_updates = sum(1 for record in records if record.is_score_update)
        confidences = [record.confidence for record in records if record.confidence is not None]
        low_confidence = tuple(
            LowConfidenceEntry(record.entry_id, record.match_id, record.confidence)
            for record in records
            if record.confidence is not None
            and record.confidence < AuditConstants.LOW_CONFIDENCE_THRESHOLD
        )
        timestamps = sorted(record.timestamp for record in records if record.timestamp)

        return AuditSummary(
            total_entries=len(records),
            score_updates=score_updates,
            status_changes=len(records) - score_updates,
            average_confidence=sum(confidences) / len(confidences) if confidences else None,
            low_confidence_entries=low_confidence,
            earliest=timestamps[0] if timestamps else None,
            latest=timestamps[-1] if timestamps else None,
            actor_activity=dict(Counter(record.updated_by for record in records))
        )

    @staticmethod
    def _to_record(entry: AuditEntry) -> AuditRecord:
        return AuditRecord(
            entry_id=entry.id,
            match_id=entry.match_id,
            timestamp=entry.timestamp,
            updated_by=entry.updated_by,
            previous_scores=(entry.previous_player1_score, entry.previous_player2_score),
            new_scores=(entry.new_player1_score, entry.new_player2_score),
            previous_status=entry.previous_status,
            new_status=entry.new_status,
            confidence=entry.confidence
        )
