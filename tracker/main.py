"""
Administrative entry point for the match tracker.

Usage:
    python -m tracker init
    python -m tracker resync PLAYER_ID
    python -m tracker resync-all
    python -m tracker check PLAYER_ID
    python -m tracker leaderboard [--limit N]
    python -m tracker history PLAYER_ID
    python -m tracker audit MATCH_ID [--summary]
    python -m tracker validate SCORE_A SCORE_B
"""

import argparse
import asyncio
from typing import List, Optional

from tracker.config import Config
from tracker.database.database import Database
from tracker.operations.score_validator import ScoreValidator
from tracker.services.audit_trail import AuditTrail
from tracker.services.stats_aggregator import StatsAggregator
from tracker.utils.exceptions import TrackerError
from tracker.utils.logger import setup_logger

logger = setup_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='tracker', description='Match tracker administration')
    parser.add_argument('--database-url', default=None,
                        help='Database URL (defaults to DATABASE_URL)')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('init', help='Create the database tables')

    resync = commands.add_parser('resync', help="Recompute one player's stats")
    resync.add_argument('player_id')

    commands.add_parser('resync-all', help='Recompute stats for every player with completed matches')

    check = commands.add_parser('check', help="Compare a player's cached stats with their match history")
    check.add_argument('player_id')

    leaderboard = commands.add_parser('leaderboard', help='Print cached stats, most wins first')
    leaderboard.add_argument('--limit', type=int, default=None)

    history = commands.add_parser('history', help="Review a player's score history for unusual patterns")
    history.add_argument('player_id')

    audit = commands.add_parser('audit', help="Print a match's audit trail")
    audit.add_argument('match_id', type=int)
    audit.add_argument('--summary', action='store_true', help='Print a summary instead of every entry')

    validate = commands.add_parser('validate', help='Validate a final score pair')
    validate.add_argument('score_a', type=int)
    validate.add_argument('score_b', type=int)

    return parser


def print_validation(score_a: int, score_b: int) -> int:
    result = ScoreValidator.validate(score_a, score_b)
    print(f"Score {score_a}-{score_b}: {'VALID' if result.is_valid else 'INVALID'}")
    for error in result.errors:
        print(f"  error: {error}")
    for warning in result.warnings:
        print(f"  warning: {warning}")
    print(f"  confidence: {result.confidence}")
    return 0 if result.is_valid else 1


async def run_command(args: argparse.Namespace) -> int:
    """Run one database-backed admin command"""
    db = Database(args.database_url)
    try:
        await db.initialize()

        if args.command == 'init':
            print("Database initialized")
            return 0

        aggregator = StatsAggregator(db)

        if args.command == 'resync':
            stats = await aggregator.execute_with_retry(lambda: aggregator.resync(args.player_id))
            print(stats.to_dict())
            return 0

        if args.command == 'resync-all':
            results = await aggregator.resync_all()
            failed = [result for result in results if not result.success]
            print(f"Synced {len(results) - len(failed)}/{len(results)} players")
            for result in failed:
                print(f"  {result.player_id}: {result.error}")
            return 1 if failed else 0

        if args.command == 'check':
            report = await aggregator.check_player_stats(args.player_id)
            print(f"Player {report.player_id}: {report.match_count} completed matches")
            if not report.has_discrepancies:
                print("Stats are in sync")
                return 0
            for field_name, discrepancy in sorted(report.discrepancies.items()):
                print(f"  {field_name}: stored={discrepancy.current} calculated={discrepancy.calculated}")
            return 1

        if args.command == 'leaderboard':
            for position, stats in enumerate(await aggregator.list_player_stats(limit=args.limit), start=1):
                print(f"{position}. {stats.player_id}: {stats.total_wins}W-{stats.total_losses}L "
                      f"(streak {stats.win_streak}, best {stats.max_win_streak})")
            return 0

        if args.command == 'history':
            analysis = await aggregator.analyze_player_history(args.player_id)
            print(f"Player {args.player_id}: {analysis.analyzed_matches} matches, risk {analysis.risk_level}")
            for pattern in analysis.patterns:
                print(f"  {pattern.severity}: {pattern.description}")
            for recommendation in analysis.recommendations:
                print(f"  - {recommendation}")
            return 0

        if args.command == 'audit':
            audit_trail = AuditTrail(db)
            records = await audit_trail.read(args.match_id)
            if args.summary:
                summary = audit_trail.summarize(records)
                print(f"Entries: {summary.total_entries} "
                      f"(score updates: {summary.score_updates}, status changes: {summary.status_changes})")
                if summary.average_confidence is not None:
                    print(f"Average confidence: {summary.average_confidence:.1f}")
                for entry in summary.low_confidence_entries:
                    print(f"  review entry {entry.entry_id}: confidence {entry.confidence}")
            else:
                for record in records:
                    print(f"[{record.timestamp:%Y-%m-%d %H:%M:%S}] {record.describe()}")
            return 0

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await db.close()


def run(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the admin command line"""
    args = build_parser().parse_args(argv)

    if args.command == 'validate':
        return print_validation(args.score_a, args.score_b)

    try:
        Config.validate()
        return asyncio.run(run_command(args))
    except TrackerError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"\nERROR: {e.user_message}")
        return 1


if __name__ == "__main__":
    raise SystemExit(run())
