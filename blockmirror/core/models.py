#!/usr/bin/env python3
"""
BlockMirror Event Models

Typed views over Google Calendar event payloads:
- SourceEvent: an entry on a source calendar whose busy time is mirrored
- Block: the placeholder event on the blocker calendar
- EventDate / EventDateTime: the two shapes an event boundary can take
- AttendeeSet: email-keyed attendee list that keeps insertion order

Each model keeps the raw payload it was built from so that writes back to
the Calendar API replace the full resource without dropping fields we do
not model.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pytz

BLOCK_SUMMARY = '🟢 BLOCK'

# Recurring instance ids are "<parentId>_YYYYMMDDThhmmssZ"
INSTANCE_ID_SUFFIX = re.compile(r'_\d{8}T\d{6}Z$')


class EventStatus(Enum):
    CONFIRMED = 'confirmed'
    TENTATIVE = 'tentative'
    CANCELLED = 'cancelled'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'EventStatus':
        try:
            return cls(value or 'confirmed')
        except ValueError:
            return cls.CONFIRMED


@dataclass(frozen=True)
class EventDate:
    """All-day boundary, e.g. {"date": "2025-06-01"}."""

    date: str

    def to_body(self) -> Dict[str, str]:
        return {'date': self.date}

    def start_instant(self) -> datetime:
        return pytz.UTC.localize(datetime.strptime(self.date, '%Y-%m-%d'))


@dataclass(frozen=True)
class EventDateTime:
    """Timed boundary, e.g. {"dateTime": "2025-06-01T09:00:00-07:00", "timeZone": "America/Los_Angeles"}."""

    date_time: str
    time_zone: Optional[str] = None

    def to_body(self) -> Dict[str, str]:
        body = {'dateTime': self.date_time}
        if self.time_zone is not None:
            body['timeZone'] = self.time_zone
        return body

    def start_instant(self) -> datetime:
        value = datetime.fromisoformat(self.date_time.replace('Z', '+00:00'))
        if value.tzinfo is None:
            tz = pytz.timezone(self.time_zone) if self.time_zone else pytz.UTC
            value = tz.localize(value)
        return value.astimezone(pytz.UTC)


EventTime = Union[EventDate, EventDateTime]


def parse_event_time(payload: Optional[Dict[str, Any]]) -> Optional[EventTime]:
    """Build an EventTime from a Google start/end object (None when absent)."""
    if not payload:
        return None
    if 'dateTime' in payload:
        return EventDateTime(payload['dateTime'], payload.get('timeZone'))
    if 'date' in payload:
        return EventDate(payload['date'])
    return None


def event_time_body(value: Optional[EventTime]) -> Optional[Dict[str, str]]:
    return value.to_body() if value is not None else None


def parse_recurrence(payload: Optional[Iterable[str]]) -> Optional[Tuple[str, ...]]:
    if not payload:
        return None
    return tuple(payload)


def recurrence_equal(a: Optional[Tuple[str, ...]], b: Optional[Tuple[str, ...]]) -> bool:
    """Order-sensitive rule comparison; an absent recurrence only equals another absent one."""
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False
    return len(a) == len(b) and all(x == y for x, y in zip(a, b))


class AttendeeSet:
    """Attendees keyed by email, insertion order preserved for writes."""

    def __init__(self, attendees: Optional[Iterable[Dict[str, Any]]] = None):
        self._attendees: List[Dict[str, Any]] = []
        for attendee in attendees or []:
            email = attendee.get('email')
            if email and email not in self:
                self._attendees.append(dict(attendee))

    def __contains__(self, email: object) -> bool:
        return any(a.get('email') == email for a in self._attendees)

    def __len__(self) -> int:
        return len(self._attendees)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttendeeSet):
            return NotImplemented
        return self.emails() == other.emails()

    def __repr__(self) -> str:
        return f"AttendeeSet({sorted(self.emails())!r})"

    def emails(self) -> set:
        return {a['email'] for a in self._attendees}

    def add(self, email: str) -> bool:
        """Append email unless already present; returns True when it was added."""
        if email in self:
            return False
        self._attendees.append({'email': email})
        return True

    def to_list(self) -> List[Dict[str, Any]]:
        return [dict(a) for a in self._attendees]


@dataclass
class SourceEvent:
    id: str
    status: EventStatus = EventStatus.CONFIRMED
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    recurrence: Optional[Tuple[str, ...]] = None
    attendees: AttendeeSet = field(default_factory=AttendeeSet)
    summary: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'SourceEvent':
        return cls(
            id=payload['id'],
            status=EventStatus.parse(payload.get('status')),
            start=parse_event_time(payload.get('start')),
            end=parse_event_time(payload.get('end')),
            recurrence=parse_recurrence(payload.get('recurrence')),
            attendees=AttendeeSet(payload.get('attendees')),
            summary=payload.get('summary'),
            raw=dict(payload),
        )

    @property
    def is_cancelled(self) -> bool:
        return self.status is EventStatus.CANCELLED

    @property
    def is_recurring_instance(self) -> bool:
        return INSTANCE_ID_SUFFIX.search(self.id) is not None

    @property
    def parent_id(self) -> Optional[str]:
        if not self.is_recurring_instance:
            return None
        return INSTANCE_ID_SUFFIX.sub('', self.id)

    def to_body(self) -> Dict[str, Any]:
        body = dict(self.raw)
        body['attendees'] = self.attendees.to_list()
        return body


@dataclass
class Block:
    id: Optional[str]
    description: str
    start: Optional[EventTime] = None
    end: Optional[EventTime] = None
    recurrence: Optional[Tuple[str, ...]] = None
    attendees: AttendeeSet = field(default_factory=AttendeeSet)
    summary: str = BLOCK_SUMMARY
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> 'Block':
        return cls(
            id=payload.get('id'),
            description=payload.get('description') or '',
            start=parse_event_time(payload.get('start')),
            end=parse_event_time(payload.get('end')),
            recurrence=parse_recurrence(payload.get('recurrence')),
            attendees=AttendeeSet(payload.get('attendees')),
            summary=payload.get('summary', BLOCK_SUMMARY),
            raw=dict(payload),
        )

    @classmethod
    def for_event(cls, event: SourceEvent, work_email: str) -> 'Block':
        attendees = AttendeeSet()
        attendees.add(work_email)
        return cls(
            id=None,
            description=event.id,
            start=event.start,
            end=event.end,
            recurrence=event.recurrence,
            attendees=attendees,
        )

    def apply_event_times(self, event: SourceEvent) -> None:
        self.start = event.start
        self.end = event.end
        self.recurrence = event.recurrence

    def to_body(self) -> Dict[str, Any]:
        body = dict(self.raw)
        body['summary'] = self.summary
        body['description'] = self.description
        for key, value in (('start', self.start), ('end', self.end)):
            if value is not None:
                body[key] = event_time_body(value)
        body['attendees'] = self.attendees.to_list()
        body.pop('recurrence', None)
        if self.recurrence:
            body['recurrence'] = list(self.recurrence)
        return body
