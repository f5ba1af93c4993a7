from collections import defaultdict
from datetime import datetime

import pytest
import pytz

from blockmirror.core.db_manager import DatabaseManager
from blockmirror.core.errors import WriteFailure
from blockmirror.core.property_store import PropertyStore, SyncTokenStore
from blockmirror.core.run_config import RunConfig

NOW = datetime(2025, 5, 1, 12, 0, tzinfo=pytz.UTC)

SCHEDULER_CAL = 'scheduler@example.com'
HOME_CAL = 'home@example.com'
BLOCKER_CAL = 'blocker@group.calendar.google.com'
HOME_EMAIL = 'me@home.example'
WORK_EMAIL = 'me@work.example'


class FakeCalendarService:
    """In-memory stand-in for GoogleCalendarService.

    Feed fetches (list calls without search text) are served from
    `feed_responses[calendar_id]`, a queue of page payloads or exceptions.
    Search calls match any stored event whose description contains the
    search text, so partial matches come back like they do from Google.
    """

    def __init__(self):
        self.calendars = defaultdict(dict)
        self.feed_responses = defaultdict(list)
        self.hidden_from_search = set()
        self.fail_writes = set()
        self.calls = []
        self._next_id = 0

    def add_event(self, calendar_id, payload):
        self.calendars[calendar_id][payload['id']] = dict(payload)
        return payload

    def writes(self, method=None):
        write_methods = ('insert', 'update', 'remove')
        return [c for c in self.calls if c[0] in write_methods and (method is None or c[0] == method)]

    def list_events(self, calendar_id, sync_token=None, time_min=None, time_max=None,
                    page_token=None, search_text=None, max_results=None):
        self.calls.append(('list', calendar_id, {
            'sync_token': sync_token,
            'time_min': time_min,
            'time_max': time_max,
            'page_token': page_token,
            'search_text': search_text,
            'max_results': max_results,
        }))

        if search_text is not None:
            items = [
                dict(e) for e in self.calendars[calendar_id].values()
                if search_text in (e.get('description') or '')
                and e['id'] not in self.hidden_from_search
            ]
            return {'items': items}

        response = self.feed_responses[calendar_id].pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def insert_event(self, calendar_id, body):
        self.calls.append(('insert', calendar_id, body))
        if 'insert' in self.fail_writes:
            raise WriteFailure('create failed: backend error', 400)
        self._next_id += 1
        created = dict(body, id=f'block-{self._next_id}')
        self.calendars[calendar_id][created['id']] = created
        return dict(created)

    def update_event(self, calendar_id, event_id, body):
        self.calls.append(('update', calendar_id, event_id, body))
        if 'update' in self.fail_writes:
            raise WriteFailure('update failed: backend error', 400)
        updated = dict(body, id=event_id)
        self.calendars[calendar_id][event_id] = updated
        return dict(updated)

    def remove_event(self, calendar_id, event_id):
        self.calls.append(('remove', calendar_id, event_id))
        if 'remove' in self.fail_writes:
            raise WriteFailure('delete failed: backend error', 400)
        self.calendars[calendar_id].pop(event_id, None)


def timed_event(event_id, start='2025-05-10T09:00:00-07:00', end='2025-05-10T10:00:00-07:00',
                time_zone='America/Los_Angeles', **extra):
    payload = {
        'id': event_id,
        'status': 'confirmed',
        'summary': f'Event {event_id}',
        'start': {'dateTime': start, 'timeZone': time_zone},
        'end': {'dateTime': end, 'timeZone': time_zone},
    }
    payload.update(extra)
    return payload


def block_payload(block_id, description, start='2025-05-10T09:00:00-07:00',
                  end='2025-05-10T10:00:00-07:00', time_zone='America/Los_Angeles', **extra):
    payload = {
        'id': block_id,
        'summary': '🟢 BLOCK',
        'description': description,
        'start': {'dateTime': start, 'timeZone': time_zone},
        'end': {'dateTime': end, 'timeZone': time_zone},
        'attendees': [{'email': WORK_EMAIL}],
    }
    payload.update(extra)
    return payload


@pytest.fixture
def fake_calendar():
    return FakeCalendarService()


@pytest.fixture
def property_store(tmp_path):
    db = DatabaseManager(f"sqlite:///{tmp_path / 'properties.db'}")
    store = PropertyStore(db)
    store.ensure_schema()
    return store


@pytest.fixture
def sync_tokens(property_store):
    return SyncTokenStore(property_store)


@pytest.fixture
def run_config():
    return RunConfig(
        scheduler_calendar_id=SCHEDULER_CAL,
        home_calendar_id=HOME_CAL,
        blocker_calendar_id=BLOCKER_CAL,
        home_email=HOME_EMAIL,
        work_email=WORK_EMAIL,
    )
