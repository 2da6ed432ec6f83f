"""Main orchestrator script.

This script can be scheduled (e.g., cron or CI) or run ad-hoc to submit a
profile, refresh every participant, clean up duplicates, or write the
current leaderboard as a Markdown report.

    python main.py submit https://www.skills.google/public_profiles/<id>
    python main.py refresh
    python main.py import roster.csv
    python main.py cleanup --names
    python main.py report -o leaderboard.md
    python main.py stats
"""

import argparse
import json
import logging
import sys

import settings
from etl import ranking, report
from etl.errors import LeaderboardError, StoreError, ValidationError
from etl.pipeline import BatchUpdater, import_roster, submit_profile
from ingest.roster import read_roster
from store.participants import ParticipantStore

# ---------------------------------------------------------------------------
# Logging setup (controlled by LB_LOGLEVEL, default INFO)
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.LOGLEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


def cmd_submit(store: ParticipantStore, args: argparse.Namespace) -> int:
    result = submit_profile(args.url, store)
    p = result.participant
    if result.welcome_back:
        info = result.progress
        logger.info(
            "Welcome back %s! badges %+d, points %+d, labs %+d",
            p.name, info.badge_progress, info.point_progress, info.lab_progress,
        )
    else:
        logger.info("Welcome %s! Added with %d badges (%s)", p.name, p.badges_earned, p.tier)
    if args.json:
        print(json.dumps({
            "participantId": result.participant_id,
            "created": result.created,
            "progress": result.progress.as_dict(),
        }, indent=2))
    return 0


def cmd_refresh(store: ParticipantStore, args: argparse.Namespace) -> int:
    updater = BatchUpdater(store, progress_bar=True)
    result = updater.run()
    logger.info(
        "Refresh %s: %d updated, %d unchanged, %d failed, %d duplicates removed",
        result.status, result.updated, result.unchanged, result.failed, updater.status.duplicates_removed,
    )
    for failure in updater.status.failures:
        logger.warning("  %s: %s", failure["participant"], failure["error"])
    if args.json:
        print(json.dumps(updater.status.as_dict(), indent=2))
    return 0


def cmd_import(store: ParticipantStore, args: argparse.Namespace) -> int:
    entries = read_roster(args.csv)
    result = import_roster(entries, store, progress_bar=True)
    for failure in result.failures:
        logger.warning("  line %s (%s): %s", failure["line"], failure["participant"], failure["error"])
    if args.json:
        print(json.dumps(result.as_dict(), indent=2))
    return 1 if result.failures else 0


def cmd_cleanup(store: ParticipantStore, args: argparse.Namespace) -> int:
    removed = store.cleanup_duplicates()
    if args.names:
        removed += store.remove_name_duplicates()
    logger.info("Duplicates removed: %d", removed)
    for group in store.review_name_duplicates():
        logger.warning("Possible duplicate names: %s", ", ".join(f"{p.name} ({p.id})" for p in group))
    return 0


def cmd_report(store: ParticipantStore, args: argparse.Namespace) -> int:
    participants = store.participants()
    report.write_markdown_report(
        ranking.rank(participants), args.output, stats=ranking.leaderboard_stats(participants)
    )
    logger.info("Leaderboard written → %s", args.output)
    return 0


def cmd_stats(store: ParticipantStore, args: argparse.Namespace) -> int:
    print(json.dumps(store.stats(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cloud skills leaderboard pipeline")
    parser.add_argument("--store", default=str(settings.STORE_PATH), help="Participant store JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    p_submit = sub.add_parser("submit", help="Add or update one public profile")
    p_submit.add_argument("url")
    p_submit.add_argument("--json", action="store_true", help="Print the result as JSON")
    p_submit.set_defaults(func=cmd_submit)

    p_refresh = sub.add_parser("refresh", help="Re-scrape every stored participant")
    p_refresh.add_argument("--json", action="store_true", help="Print the final batch status as JSON")
    p_refresh.set_defaults(func=cmd_refresh)

    p_import = sub.add_parser("import", help="Submit every profile listed in a roster CSV")
    p_import.add_argument("csv")
    p_import.add_argument("--json", action="store_true", help="Print the import summary as JSON")
    p_import.set_defaults(func=cmd_import)

    p_cleanup = sub.add_parser("cleanup", help="Remove duplicate participants")
    p_cleanup.add_argument("--names", action="store_true", help="Also remove exact display-name duplicates")
    p_cleanup.set_defaults(func=cmd_cleanup)

    p_report = sub.add_parser("report", help="Write the ranked leaderboard as Markdown")
    p_report.add_argument("--output", "-o", default="leaderboard.md")
    p_report.set_defaults(func=cmd_report)

    p_stats = sub.add_parser("stats", help="Print leaderboard totals")
    p_stats.set_defaults(func=cmd_stats)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    store = ParticipantStore(args.store)
    try:
        return args.func(store, args)
    except ValidationError as exc:
        logger.error("Invalid input: %s", exc)
        return 2
    except StoreError as exc:
        logger.error("Leaderboard storage unavailable: %s", exc)
        return 3
    except LeaderboardError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
