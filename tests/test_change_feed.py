from datetime import datetime

import pytest
import pytz

from blockmirror.core.errors import CalendarServiceError, FetchFatal, SyncTokenInvalidError
from blockmirror.sync.change_feed import ChangeFeedFetcher, rfc3339

from conftest import NOW, timed_event


@pytest.fixture
def fetcher(fake_calendar, sync_tokens):
    return ChangeFeedFetcher(fake_calendar, sync_tokens, now=lambda: NOW)


def feed_calls(fake_calendar):
    return [c[2] for c in fake_calendar.calls if c[0] == 'list']


def test_first_fetch_seeds_from_lookback_window(fetcher, fake_calendar, sync_tokens):
    fake_calendar.feed_responses['cal'] = [
        {'items': [timed_event('a')], 'nextSyncToken': 'token-1'},
    ]

    events = fetcher.fetch_events_by_token('cal')

    assert [e.id for e in events] == ['a']
    call = feed_calls(fake_calendar)[0]
    assert call['sync_token'] is None
    assert call['time_min'] == rfc3339(fetcher.lookback_start())
    assert call['time_max'] is None
    assert call['max_results'] == 100
    assert sync_tokens.get_token('cal') == 'token-1'


def test_lookback_start_is_midnight_thirty_days_back(fetcher):
    start = fetcher.lookback_start()
    assert (start.hour, start.minute, start.second) == (0, 0, 0)
    assert (NOW.astimezone(start.tzinfo).date() - start.date()).days == 30


def test_stored_token_is_used_and_pages_concatenated(fetcher, fake_calendar, sync_tokens):
    sync_tokens.set_token('cal', 'token-1')
    fake_calendar.feed_responses['cal'] = [
        {'items': [timed_event('a'), timed_event('b')], 'nextPageToken': 'page-2'},
        {'items': [], 'nextPageToken': 'page-3'},
        {'items': [timed_event('c')], 'nextSyncToken': 'token-2'},
    ]

    events = fetcher.fetch_events_by_token('cal')

    assert [e.id for e in events] == ['a', 'b', 'c']
    calls = feed_calls(fake_calendar)
    assert [c['page_token'] for c in calls] == [None, 'page-2', 'page-3']
    assert all(c['sync_token'] == 'token-1' for c in calls)
    assert all(c['time_min'] is None for c in calls)
    assert sync_tokens.get_token('cal') == 'token-2'


def test_missing_next_sync_token_keeps_previous_token(fetcher, fake_calendar, sync_tokens):
    sync_tokens.set_token('cal', 'token-1')
    fake_calendar.feed_responses['cal'] = [{'items': [timed_event('a')]}]

    fetcher.fetch_events_by_token('cal')

    assert sync_tokens.get_token('cal') == 'token-1'


def test_invalid_token_clears_state_and_retries_once(fetcher, fake_calendar, sync_tokens, monkeypatch):
    sync_tokens.set_token('cal', 'stale')
    sync_tokens.set_token('other', 'keep')
    fake_calendar.feed_responses['cal'] = [
        SyncTokenInvalidError('Sync token is no longer valid', 410),
        {'items': [timed_event('a')], 'nextSyncToken': 'fresh'},
    ]

    tokens_at_retry = []
    original_list = fake_calendar.list_events

    def spy(calendar_id, **kwargs):
        if kwargs.get('sync_token') is None:
            tokens_at_retry.append(sync_tokens.load())
        return original_list(calendar_id, **kwargs)

    monkeypatch.setattr(fake_calendar, 'list_events', spy)

    events = fetcher.fetch_events_by_token('cal')

    assert [e.id for e in events] == ['a']
    calls = feed_calls(fake_calendar)
    assert len(calls) == 2
    assert calls[0]['sync_token'] == 'stale'
    assert calls[1]['sync_token'] is None
    assert calls[1]['time_min'] is not None
    assert calls[1]['time_max'] is None
    assert tokens_at_retry == [{'other': 'keep'}]
    assert sync_tokens.load() == {'other': 'keep', 'cal': 'fresh'}


def test_other_failure_is_fatal_and_not_retried(fetcher, fake_calendar, sync_tokens):
    sync_tokens.set_token('cal', 'token-1')
    fake_calendar.feed_responses['cal'] = [CalendarServiceError('Forbidden', 403)]

    with pytest.raises(FetchFatal) as excinfo:
        fetcher.fetch_events_by_token('cal')

    assert excinfo.value.calendar_id == 'cal'
    assert len(feed_calls(fake_calendar)) == 1
    assert sync_tokens.get_token('cal') == 'token-1'


def test_dry_run_does_not_persist_tokens(fake_calendar, sync_tokens):
    fetcher = ChangeFeedFetcher(fake_calendar, sync_tokens, persist_tokens=False, now=lambda: NOW)
    fake_calendar.feed_responses['cal'] = [{'items': [], 'nextSyncToken': 'token-1'}]

    fetcher.fetch_events_by_token('cal')

    assert sync_tokens.load() == {}


def test_time_window_ignores_sync_state(fetcher, fake_calendar, sync_tokens):
    sync_tokens.set_token('cal', 'token-1')
    fake_calendar.feed_responses['cal'] = [
        {'items': [timed_event('a')], 'nextPageToken': 'p2'},
        {'items': [timed_event('b')], 'nextSyncToken': 'ignored'},
    ]
    start = datetime(2025, 5, 1, tzinfo=pytz.UTC)
    end = datetime(2025, 7, 30, tzinfo=pytz.UTC)

    events = fetcher.fetch_events_by_time_window('cal', start, end)

    assert [e.id for e in events] == ['a', 'b']
    calls = feed_calls(fake_calendar)
    assert all(c['sync_token'] is None for c in calls)
    assert calls[0]['time_min'] == '2025-05-01T00:00:00Z'
    assert calls[0]['time_max'] == '2025-07-30T00:00:00Z'
    assert sync_tokens.load() == {'cal': 'token-1'}


def test_time_window_failure_is_fatal(fetcher, fake_calendar):
    fake_calendar.feed_responses['cal'] = [CalendarServiceError('Backend Error', 500)]

    with pytest.raises(FetchFatal):
        fetcher.fetch_events_by_time_window('cal', NOW, NOW)
