import argparse
from dataclasses import replace
from datetime import datetime, timezone

from . import __version__
from .config import ConfigError, JobConfig
from .database import init_database
from .feeds import WebhookRCFeed
from .job import JobServices, run_category_membership_change
from .backfill import backfill_category_changes
from .logger import get_logger
from .timestamps import parse_timestamp


def build_services(config: JobConfig) -> JobServices:
    logger = get_logger(level=config.log_level, log_dir=config.log_dir)
    feeds = [WebhookRCFeed(config.rc_feed_url, logger=logger)] if config.rc_feed_url else []
    return JobServices.from_config(config, logger=logger, feeds=feeds)


def cmd_init_db(args: argparse.Namespace, config: JobConfig) -> None:
    init_database(config.db_url)
    print(f"Initialized schema at {config.db_url}")


def cmd_run(args: argparse.Namespace, config: JobConfig) -> None:
    try:
        trigger = parse_timestamp(args.rev_timestamp or datetime.now(timezone.utc))
    except ValueError as e:
        raise SystemExit(str(e))

    services = build_services(config)
    outcome = run_category_membership_change(args.page_id, trigger, services)
    print(f"Status: {outcome.status.value}")
    if outcome.reason:
        print(f"Reason: {outcome.reason}")
    print(
        f"Revisions: {outcome.revisions_processed} "
        f"notifications={outcome.notifications_emitted} batch_commits={outcome.batch_commits}"
    )
    if outcome.retryable:
        raise SystemExit(75)  # EX_TEMPFAIL: the caller should retry


def cmd_backfill(args: argparse.Namespace, config: JobConfig) -> None:
    try:
        since = parse_timestamp(args.since)
    except ValueError as e:
        raise SystemExit(str(e))

    services = build_services(config)
    report = backfill_category_changes(services, since, limit=args.limit)
    print(
        f"Done. pages={len(report.outcomes)} notifications={report.notifications} "
        f"failed={len(report.failed_pages)}"
    )
    for page_id in report.failed_pages:
        print(f"[retry] page #{page_id}: {report.outcomes[page_id].reason}")
    services.logger.log_metrics_summary()


def cmd_changes(args: argparse.Namespace, config: JobConfig) -> None:
    services = build_services(config)
    with services.cluster.begin_round("cli.changes") as rnd:
        changes = services.sink.changes_for_page(rnd.replica(("recentchanges",)), args.page_id, limit=args.limit)
        if not changes:
            print(f"No category changes recorded for page #{args.page_id}.")
            return
        print(f"Found {len(changes)} category changes for page #{args.page_id}:\n")
        for rc in changes:
            sign = "+" if (rc.rc_params or {}).get("added") else "-"
            print(f"{rc.rc_timestamp.isoformat()} r{rc.rc_this_oldid} {sign}Category:{rc.rc_title}")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="categorysync", description="Category membership convergence jobs")
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--db-url", help="Primary database URL (or set CATSYNC_DB_URL)")

    subparsers = parser.add_subparsers(dest="command")
    init = subparsers.add_parser("init-db", help="Create the schema on the primary database")
    init.set_defaults(func=cmd_init_db)

    run = subparsers.add_parser("run", help="Run convergence for one page")
    run.add_argument("--page-id", type=int, required=True, help="Page ID")
    run.add_argument("--rev-timestamp", help="Timestamp of the triggering revision (default: now)")
    run.set_defaults(func=cmd_run)

    bf = subparsers.add_parser("backfill", help="Run convergence for every page edited since a timestamp")
    bf.add_argument("--since", required=True, help="YYYYMMDDHHMMSS or ISO-8601 timestamp")
    bf.add_argument("--limit", type=int, help="Optional limit on number of pages")
    bf.set_defaults(func=cmd_backfill)

    ch = subparsers.add_parser("changes", help="List recorded category changes of a page")
    ch.add_argument("--page-id", type=int, required=True, help="Page ID")
    ch.add_argument("--limit", type=int, default=50, help="Maximum entries to show (default: 50)")
    ch.set_defaults(func=cmd_changes)

    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    try:
        config = JobConfig.from_env()
    except ConfigError as e:
        raise SystemExit(f"Configuration error: {e}")
    if args.db_url:
        config = replace(config, db_url=args.db_url)

    if hasattr(args, "func"):
        args.func(args, config)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
