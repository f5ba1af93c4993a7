#!/usr/bin/env python3
"""
Block Sync Service

Runs one mirroring pass over every configured source calendar:
- Reactive run: incremental (sync token) fetch per source
- Proactive run: fetch of a fixed window, now → PROACTIVE_WINDOW_DAYS ahead

Each source is fetched and fully reconciled before the next one starts.
One CreationTracker lives for the whole run and is shared by all sources;
each source gets its own BlockLookupCache.

A fetch failure aborts the run; sources already processed stay committed.
Runs hold the database lock SYNC_LOCK_KEY, so at most one runs at a time.
A rejected write is logged and the loop moves to the next event.
"""

import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import pytz

from blockmirror.config import PROACTIVE_WINDOW_DAYS
from blockmirror.core.errors import WriteFailure
from blockmirror.core.models import SourceEvent
from blockmirror.core.property_store import LAST_RUN_KEY, PropertyStore, SyncTokenStore
from blockmirror.core.run_config import RunConfig, SourceCalendar
from blockmirror.sync.block_lookup import BlockFinder, BlockLookupCache, CreationTracker
from blockmirror.sync.block_reconciler import BlockReconciler
from blockmirror.sync.change_feed import ChangeFeedFetcher
from blockmirror.sync.recurrence import RecurrenceResolver

SYNC_LOCK_KEY = 'blockmirror:sync'


class BlockSyncService:
    """Sequence fetch → reconcile across the source calendars."""

    def __init__(self, calendar_service, properties: PropertyStore, run_config: RunConfig,
                 dry_run: bool = False, now: Optional[Callable[[], datetime]] = None):
        self.logger = logging.getLogger('block-sync')
        self.properties = properties
        self.run_config = run_config
        self.dry_run = dry_run
        self._now = now or (lambda: datetime.now(pytz.UTC))

        self.sync_tokens = SyncTokenStore(properties)
        self.fetcher = ChangeFeedFetcher(calendar_service, self.sync_tokens,
                                         persist_tokens=not dry_run, now=self._now)
        self.block_finder = BlockFinder(calendar_service, run_config.blocker_calendar_id)
        self.resolver = RecurrenceResolver(self.block_finder, now=self._now)
        self.reconciler = BlockReconciler(
            calendar_service,
            self.block_finder,
            run_config.blocker_calendar_id,
            home_email=run_config.home_email,
            work_email=run_config.work_email,
            dry_run=dry_run,
        )

    def run_reactive(self) -> Dict:
        """Incremental run driven by each calendar's sync token."""
        return self._run('reactive', self.fetcher.fetch_events_by_token)

    def run_proactive(self) -> Dict:
        """Windowed run covering now through PROACTIVE_WINDOW_DAYS ahead."""
        start = self._now()
        end = start + timedelta(days=PROACTIVE_WINDOW_DAYS)
        return self._run(
            'proactive',
            lambda calendar_id: self.fetcher.fetch_events_by_time_window(calendar_id, start, end),
        )

    def _run(self, mode: str, fetch: Callable[[str], List[SourceEvent]]) -> Dict:
        # One run at a time across processes
        with self.properties.db.advisory_lock(SYNC_LOCK_KEY):
            return self._run_sources(mode, fetch)

    def _run_sources(self, mode: str, fetch: Callable[[str], List[SourceEvent]]) -> Dict:
        self.logger.info(f"🔄 Starting {mode} run → {self.run_config.blocker_calendar_id}")
        if self.dry_run:
            self.logger.info("DRY RUN MODE: Not creating/updating/deleting any events")

        tracker = CreationTracker()
        results = {
            'mode': mode,
            'dry_run': self.dry_run,
            'started_at': self._now().isoformat(),
            'success': False,
            'sources': {},
        }

        try:
            for source in self.run_config.sources:
                events = fetch(source.calendar_id)
                self.logger.info(f"got {len(events)} event(s) from {source.calendar_id}")
                results['sources'][source.name] = self.process_calendar(source, events, tracker)
            results['success'] = True
        except Exception as e:
            results['error'] = str(e)
            self.logger.error(f"❌ {mode} run failed: {e}")
            raise
        finally:
            results['finished_at'] = self._now().isoformat()
            if not self.dry_run:
                self.properties.set(LAST_RUN_KEY, json.dumps(results))

        self.logger.info(f"✅ {mode} run complete")
        return results

    def process_calendar(self, source: SourceCalendar, events: List[SourceEvent],
                         tracker: CreationTracker) -> Dict[str, int]:
        """Reconcile every fetched event of one source, in fetch order."""
        cache = BlockLookupCache()
        stats = {
            'events': len(events),
            'suppressed': 0,
            'attendees_added': 0,
            'errors': 0,
        }

        for index, event in enumerate(events, start=1):
            self.logger.info(f"[{index}: {event.id}] event: {event.summary or 'No summary available'}")
            try:
                if not self.resolver.should_reconcile(event, cache, index):
                    stats['suppressed'] += 1
                    continue

                if source.add_attendees and self.reconciler.propagate_attendee(source.calendar_id, event, index):
                    stats['attendees_added'] += 1

                action = self.reconciler.reconcile(event, cache, tracker, index)
                stats[action.value] = stats.get(action.value, 0) + 1
            except WriteFailure as e:
                self.logger.error(f"[{index}: {event.id}] write failed: {e}")
                stats['errors'] += 1

        self.logger.info(f"  {source.name}: {stats}")
        return stats


def create_service(dry_run: bool = False, database_url: Optional[str] = None,
                   properties: Optional[PropertyStore] = None) -> BlockSyncService:
    """Wire the production collaborators: Postgres property store + Google Calendar API."""
    from blockmirror.core.calendar_service import GoogleCalendarService, build_calendar_service
    from blockmirror.core.run_config import load_run_config

    if properties is None:
        properties = open_property_store(database_url)
    run_config = load_run_config(properties)
    calendar_service = GoogleCalendarService(build_calendar_service())
    return BlockSyncService(calendar_service, properties, run_config, dry_run=dry_run)


def open_property_store(database_url: Optional[str] = None) -> PropertyStore:
    from blockmirror.core.db_manager import DatabaseManager

    db = DatabaseManager(database_url)
    if not db.test_connection():
        raise Exception("Failed to connect to database")
    properties = PropertyStore(db)
    properties.ensure_schema()
    return properties


def main():
    """Main function."""
    import argparse

    parser = argparse.ArgumentParser(description='Mirror busy time onto the blocker calendar')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Set logging level')
    parser.add_argument('--dry-run', action='store_true',
                        help='Log decisions without writing to any calendar')
    subparsers = parser.add_subparsers(dest='command', required=True)
    subparsers.add_parser('reactive', help='Incremental sync using stored sync tokens')
    subparsers.add_parser('proactive', help=f'Sync the next {PROACTIVE_WINDOW_DAYS} days')
    reset_parser = subparsers.add_parser('reset-sync-token', help='Forget stored sync tokens')
    reset_parser.add_argument('--calendar', help='Calendar to reset (default: all calendars)')
    set_parser = subparsers.add_parser('set-property', help='Store a run configuration value')
    set_parser.add_argument('key')
    set_parser.add_argument('value')
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == 'reset-sync-token':
        SyncTokenStore(open_property_store()).reset(args.calendar)
        return 0

    if args.command == 'set-property':
        open_property_store().set(args.key, args.value)
        print(f"✅ Stored {args.key}")
        return 0

    print("=" * 60)
    print(f"🟢 BLOCK SYNC ({args.command.upper()})")
    print("=" * 60)

    service = create_service(dry_run=args.dry_run)
    if args.command == 'reactive':
        results = service.run_reactive()
    else:
        results = service.run_proactive()

    for name, stats in results['sources'].items():
        print(f"  {name}: {stats}")
    print("\n✅ Sync complete!")
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
