"""Operator command line for calendar sync, feed inspection and cleanup."""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import lambda_function
from processor.booking_classifier import BookingClassifier
from processor.ical_parser import ICalParser
from sync.exceptions import SyncError
from sync.log_config import setup_logging
from sync.settings import load_settings

logger = logging.getLogger(__name__)


def _cmd_sync(args: argparse.Namespace) -> int:
    settings = load_settings()
    calendar_sync = lambda_function.build_sync(settings)

    if args.all:
        batch = asyncio.run(calendar_sync.sync_all())
        print(
            f"Synced {batch.properties_synced} properties "
            f"({batch.properties_failed} failed), "
            f"created {batch.jobs_created} jobs"
        )
        for error in batch.errors:
            print(f"  error: {error}", file=sys.stderr)
        return 1 if batch.properties_failed else 0

    result = calendar_sync.sync_property_by_id(args.property_id)
    print(f"Created {result.jobs_created} jobs for property {result.property_id}")
    for error in result.errors:
        print(f"  error: {error}", file=sys.stderr)
    return 1 if result.errors else 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    settings = load_settings()
    content = lambda_function.build_fetcher(settings).fetch_calendar_text(args.url)

    events = ICalParser().parse(content)
    classifier = BookingClassifier()

    print(f"{len(events)} events")
    for event in events:
        record = classifier.annotate(event)
        flag = 'BOOKING' if record.is_booking else 'skip'
        print(
            f"{flag:8} {event.start_date:%Y-%m-%d} -> {event.end_date:%Y-%m-%d} "
            f"nights={record.nights_stayed} phone=*{record.phone_last_four or '----'} "
            f"uid={event.uid} summary={event.summary!r}"
        )
    return 0


def _cmd_cleanup(args: argparse.Namespace) -> int:
    settings = load_settings()
    calendar_sync = lambda_function.build_sync(settings)

    result = calendar_sync.reconciler.remove_jobs_for_address(args.address)
    print(f"Removed {result.deleted} future calendar jobs at {args.address}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ical-sync',
        description='Sync property calendars into cleaning jobs'
    )
    parser.add_argument('--log-level', default=None, help='Override LOG_LEVEL')
    subparsers = parser.add_subparsers(dest='command', required=True)

    sync_parser = subparsers.add_parser('sync', help='Sync calendars now')
    target = sync_parser.add_mutually_exclusive_group(required=True)
    target.add_argument('--property-id', help='Sync a single property')
    target.add_argument('--all', action='store_true', help='Sync every property')
    sync_parser.set_defaults(func=_cmd_sync)

    inspect_parser = subparsers.add_parser(
        'inspect', help='Fetch and classify a feed without writing anything'
    )
    inspect_parser.add_argument('url', help='iCal feed URL')
    inspect_parser.set_defaults(func=_cmd_inspect)

    cleanup_parser = subparsers.add_parser(
        'cleanup', help='Remove future calendar jobs at an address'
    )
    cleanup_parser.add_argument('--address', required=True)
    cleanup_parser.set_defaults(func=_cmd_cleanup)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or load_settings().log_level)

    try:
        return args.func(args)
    except (SyncError, ValueError) as e:
        logger.error(f"Command failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
