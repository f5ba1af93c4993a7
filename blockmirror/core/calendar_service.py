#!/usr/bin/env python3
"""
Google Calendar Service

Thin wrapper over the googleapiclient `calendar v3` resource exposing the
four calls the sync pipeline needs (list, insert, update, remove) and
translating HttpError into BlockMirror exceptions:
- HTTP 410 on a list call → SyncTokenInvalidError
- Any other list failure → CalendarServiceError
- Rejected writes → WriteFailure (after retrying rate limits / server errors)
- Inserts only retry rate limits: a 5xx insert may already have been committed

All writes are sent with sendUpdates='all'.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from blockmirror.config import (
    GOOGLE_CREDENTIALS_FILE,
    GOOGLE_DELEGATED_USER,
    GOOGLE_SCOPES,
    WRITE_BASE_BACKOFF,
    WRITE_MAX_RETRIES,
)
from blockmirror.core.errors import CalendarServiceError, SyncTokenInvalidError, WriteFailure

SEND_UPDATES = 'all'


def build_calendar_service(credentials_file: str = GOOGLE_CREDENTIALS_FILE,
                           delegated_user: str = GOOGLE_DELEGATED_USER):
    """Initialize Google Calendar API resource from a service account key."""
    logger = logging.getLogger('calendar-service')
    try:
        credentials = Credentials.from_service_account_file(credentials_file, scopes=GOOGLE_SCOPES)
        if delegated_user:
            credentials = credentials.with_subject(delegated_user)
        service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
        logger.info("✅ Google Calendar API service initialized")
        return service
    except Exception as e:
        logger.error(f"❌ Failed to initialize Calendar API: {e}")
        raise


def _status_of(error: HttpError) -> int:
    return int(error.resp.status)


class GoogleCalendarService:
    """Calendar Service backed by the Google Calendar API."""

    def __init__(self, resource, sleep: Callable[[float], None] = time.sleep):
        self.logger = logging.getLogger('calendar-service')
        self.resource = resource
        self._sleep = sleep
        self.max_retries = WRITE_MAX_RETRIES
        self.base_backoff = WRITE_BASE_BACKOFF

    def list_events(self, calendar_id: str, sync_token: Optional[str] = None,
                    time_min: Optional[str] = None, time_max: Optional[str] = None,
                    page_token: Optional[str] = None, search_text: Optional[str] = None,
                    max_results: Optional[int] = None) -> Dict[str, Any]:
        params = {
            'calendarId': calendar_id,
            'syncToken': sync_token,
            'timeMin': time_min,
            'timeMax': time_max,
            'pageToken': page_token,
            'q': search_text,
            'maxResults': max_results,
        }
        params = {k: v for k, v in params.items() if v is not None}

        try:
            return self.resource.events().list(**params).execute()
        except HttpError as e:
            status = _status_of(e)
            if status == 410 and sync_token is not None:
                raise SyncTokenInvalidError(f"Sync token is no longer valid: {e}", status) from e
            raise CalendarServiceError(f"Listing events on {calendar_id} failed: {e}", status) from e

    def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        created = self._write_with_retry(
            'create',
            self.resource.events().insert,
            retry_server_errors=False,
            calendarId=calendar_id,
            body=body,
            sendUpdates=SEND_UPDATES,
        )
        self.logger.info(f"successfully created event: {created.get('id')}")
        return created

    def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        updated = self._write_with_retry(
            'update',
            self.resource.events().update,
            calendarId=calendar_id,
            eventId=event_id,
            body=body,
            sendUpdates=SEND_UPDATES,
        )
        self.logger.info(f"successfully updated event: {updated.get('id')}")
        return updated

    def remove_event(self, calendar_id: str, event_id: str):
        try:
            self._write_with_retry(
                'delete',
                self.resource.events().delete,
                calendarId=calendar_id,
                eventId=event_id,
                sendUpdates=SEND_UPDATES,
            )
        except WriteFailure as e:
            if e.status in (404, 410):
                self.logger.warning(f"event already gone: {event_id}")
                return
            raise
        self.logger.info(f"successfully deleted event: {event_id}")

    def _write_with_retry(self, action: str, api_func, retry_server_errors: bool = True,
                          **kwargs) -> Dict[str, Any]:
        """
        Execute a write with exponential backoff on rate limits and server errors.
        With retry_server_errors=False only rate limits are retried.

        Raises WriteFailure once the request is rejected or retries run out.
        """
        last_error = None
        for attempt in range(self.max_retries):
            try:
                return api_func(**kwargs).execute() or {}
            except HttpError as e:
                status = _status_of(e)
                last_error = e
                rate_limited = status == 429 or 'rateLimitExceeded' in str(e)
                if rate_limited or (retry_server_errors and status >= 500):
                    if attempt == self.max_retries - 1:
                        break
                    backoff_time = self.base_backoff * (2 ** attempt)
                    self.logger.warning(
                        f"⏳ {action} got HTTP {status}, backing off for {backoff_time}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    self._sleep(backoff_time)
                    continue
                self.logger.error(f"{action} failed with error: {e}")
                raise WriteFailure(f"{action} failed: {e}", status) from e

        self.logger.error(f"❌ Max retries ({self.max_retries}) exceeded for {action}")
        raise WriteFailure(f"{action} failed after {self.max_retries} attempts: {last_error}",
                           _status_of(last_error))
