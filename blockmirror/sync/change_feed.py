#!/usr/bin/env python3
"""
Change Feed Fetcher

Turns a calendar id into the list of events that changed since the last
successful fetch (incremental mode) or that fall inside an explicit window
(windowed mode).

Incremental mode:
- Uses the stored sync token when there is one, otherwise seeds state with
  a fetch bounded below at midnight SYNC_LOOKBACK_DAYS ago
- Follows nextPageToken until the service stops returning one
- Saves the nextSyncToken from the final page
- On an expired token: clears it and retries once as a full resync

Windowed mode never reads or writes sync tokens.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

import pytz

from blockmirror.config import SYNC_LOOKBACK_DAYS, TOKEN_PAGE_SIZE
from blockmirror.core.errors import CalendarServiceError, FetchFatal, SyncTokenInvalidError
from blockmirror.core.models import SourceEvent
from blockmirror.core.property_store import SyncTokenStore


def rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC).isoformat().replace('+00:00', 'Z')


class ChangeFeedFetcher:
    """Fetch source calendar deltas through the Calendar Service."""

    def __init__(self, calendar_service, sync_tokens: SyncTokenStore,
                 persist_tokens: bool = True,
                 now: Optional[Callable[[], datetime]] = None):
        self.logger = logging.getLogger('change-feed')
        self.calendar_service = calendar_service
        self.sync_tokens = sync_tokens
        self.persist_tokens = persist_tokens
        self._now = now or (lambda: datetime.now(pytz.UTC))

    def lookback_start(self) -> datetime:
        """Local midnight SYNC_LOOKBACK_DAYS days before now."""
        local_now = self._now().astimezone()
        start = local_now - timedelta(days=SYNC_LOOKBACK_DAYS)
        return start.replace(hour=0, minute=0, second=0, microsecond=0)

    def fetch_events_by_token(self, calendar_id: str, full_sync: bool = False) -> List[SourceEvent]:
        """Return every event changed since the stored token (or the lookback window)."""
        sync_token = None if full_sync else self.sync_tokens.get_token(calendar_id)

        params = {'max_results': TOKEN_PAGE_SIZE}
        if sync_token:
            params['sync_token'] = sync_token
        else:
            params['time_min'] = rfc3339(self.lookback_start())
            self.logger.info(f"Full sync of {calendar_id} from {params['time_min']}")

        try:
            items, next_sync_token = self._fetch_all_pages(calendar_id, **params)
        except SyncTokenInvalidError:
            self.logger.warning(f"⚠️  Sync token for {calendar_id} is no longer valid, performing full sync")
            if self.persist_tokens:
                self.sync_tokens.clear_token(calendar_id)
            return self.fetch_events_by_token(calendar_id, full_sync=True)
        except CalendarServiceError as e:
            self.logger.error(f"Error fetching events from {calendar_id}: {e}")
            raise FetchFatal(calendar_id, e) from e

        if next_sync_token and self.persist_tokens:
            self.sync_tokens.set_token(calendar_id, next_sync_token)

        return [SourceEvent.from_api(item) for item in items]

    def fetch_events_by_time_window(self, calendar_id: str, start: datetime,
                                    end: datetime) -> List[SourceEvent]:
        """Return every event between start and end, leaving sync state untouched."""
        try:
            items, _ = self._fetch_all_pages(
                calendar_id,
                time_min=rfc3339(start),
                time_max=rfc3339(end),
            )
        except CalendarServiceError as e:
            self.logger.error(f"Error fetching events from {calendar_id}: {e}")
            raise FetchFatal(calendar_id, e) from e

        return [SourceEvent.from_api(item) for item in items]

    def _fetch_all_pages(self, calendar_id: str, **params) -> Tuple[List[dict], Optional[str]]:
        items = []
        page_token = None
        while True:
            result = self.calendar_service.list_events(calendar_id, page_token=page_token, **params)
            items.extend(result.get('items') or [])

            page_token = result.get('nextPageToken')
            if not page_token:
                return items, result.get('nextSyncToken')
