"""Run configuration resolved from the property store with environment fallbacks."""

import logging
from dataclasses import dataclass
from typing import List

from blockmirror import config
from blockmirror.core.errors import ConfigurationError
from blockmirror.core.property_store import PropertyStore

# Property key → environment default
PROPERTY_DEFAULTS = {
    'schedulerCal': config.SCHEDULER_CALENDAR_ID,
    'homeCal': config.HOME_CALENDAR_ID,
    'blockerCal': config.BLOCKER_CALENDAR_ID,
    'homeEmail': config.HOME_EMAIL,
    'workEmail': config.WORK_EMAIL,
}


@dataclass(frozen=True)
class SourceCalendar:
    name: str
    calendar_id: str
    add_attendees: bool


@dataclass(frozen=True)
class RunConfig:
    scheduler_calendar_id: str
    home_calendar_id: str
    blocker_calendar_id: str
    home_email: str
    work_email: str

    @property
    def sources(self) -> List[SourceCalendar]:
        """Source calendars in processing order; only the scheduler gets the home attendee."""
        return [
            SourceCalendar('scheduler', self.scheduler_calendar_id, add_attendees=True),
            SourceCalendar('home', self.home_calendar_id, add_attendees=False),
        ]


def load_run_config(properties: PropertyStore) -> RunConfig:
    logger = logging.getLogger('run-config')
    stored = properties.get_properties()

    values = {}
    missing = []
    for key, default in PROPERTY_DEFAULTS.items():
        value = stored.get(key) or default
        if not value:
            missing.append(key)
        values[key] = value

    if missing:
        raise ConfigurationError(f"Missing run configuration: {', '.join(missing)}")

    logger.debug(f"Resolved run configuration for blocker calendar {values['blockerCal']}")
    return RunConfig(
        scheduler_calendar_id=values['schedulerCal'],
        home_calendar_id=values['homeCal'],
        blocker_calendar_id=values['blockerCal'],
        home_email=values['homeEmail'],
        work_email=values['workEmail'],
    )
