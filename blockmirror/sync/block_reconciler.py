#!/usr/bin/env python3
"""
Block Reconciler

Given one source event, decide the single write needed on the blocker
calendar and apply it:

| matching block | event cancelled | action                                  |
|----------------|-----------------|-----------------------------------------|
| present        | yes             | delete block, cache entry → absent      |
| present        | no              | update start/end/recurrence if changed  |
| absent         | yes             | nothing to delete                       |
| absent         | no              | create block unless already in progress |

Start/end values compare on their raw fields (date vs dateTime + timeZone),
never on the resolved instant. Recurrence compares rule by rule in order.

Optionally, before reconciling, the home address is added as an attendee
on the source event itself (scheduler calendar only).
"""

import dataclasses
import json
import logging
from enum import Enum
from typing import List

from blockmirror.core.errors import WriteFailure
from blockmirror.core.models import Block, SourceEvent, event_time_body, recurrence_equal
from blockmirror.sync.block_lookup import BlockFinder, BlockLookupCache, CreationTracker


class ReconcileAction(Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    DELETED = 'deleted'
    UNCHANGED = 'unchanged'
    NOTHING_TO_DELETE = 'nothing_to_delete'
    SKIPPED_IN_PROGRESS = 'skipped_in_progress'


def _describe(value) -> str:
    if isinstance(value, tuple):
        value = list(value)
    elif value is not None and not isinstance(value, list):
        value = event_time_body(value)
    return json.dumps(value, ensure_ascii=False)


def block_changes(block: Block, event: SourceEvent) -> List[str]:
    """Human-readable list of fields where the block no longer matches the event."""
    changes = []
    if block.start != event.start:
        changes.append(f"start: {_describe(block.start)} → {_describe(event.start)}")
    if block.end != event.end:
        changes.append(f"end: {_describe(block.end)} → {_describe(event.end)}")
    if not recurrence_equal(block.recurrence, event.recurrence):
        changes.append(f"recurrence: {_describe(block.recurrence)} → {_describe(event.recurrence)}")
    return changes


class BlockReconciler:
    """Mirror one source event onto the blocker calendar."""

    def __init__(self, calendar_service, block_finder: BlockFinder, blocker_calendar_id: str,
                 home_email: str, work_email: str, dry_run: bool = False):
        self.logger = logging.getLogger('block-reconciler')
        self.calendar_service = calendar_service
        self.block_finder = block_finder
        self.blocker_calendar_id = blocker_calendar_id
        self.home_email = home_email
        self.work_email = work_email
        self.dry_run = dry_run

    def propagate_attendee(self, source_calendar_id: str, event: SourceEvent, index: int = 0) -> bool:
        """Add the home address to a live source event that lacks it. Returns True when written."""
        if event.is_cancelled or self.home_email in event.attendees:
            return False

        self.logger.info(f"[{index}: {event.id}] adding attendee")
        event.attendees.add(self.home_email)
        if self.dry_run:
            return False

        try:
            self.calendar_service.update_event(source_calendar_id, event.id, event.to_body())
        except WriteFailure as e:
            self.logger.error(f"[{index}: {event.id}] update failed with error: {e}")
            return False

        return True

    def reconcile(self, event: SourceEvent, cache: BlockLookupCache, tracker: CreationTracker,
                  index: int = 0) -> ReconcileAction:
        matching_block = self.block_finder.find_block(event.id, cache, index)

        if matching_block:
            if event.is_cancelled:
                return self._delete_block(event, matching_block, cache, index)
            return self._update_block(event, matching_block, cache, index)

        if event.is_cancelled:
            return ReconcileAction.NOTHING_TO_DELETE
        return self._create_block(event, cache, tracker, index)

    def _delete_block(self, event: SourceEvent, block: Block, cache: BlockLookupCache,
                      index: int) -> ReconcileAction:
        self.logger.info(f"[{index}: {event.id}] deleting block")
        if not self.dry_run:
            self.calendar_service.remove_event(self.blocker_calendar_id, block.id)
            cache.mark_absent(event.id)
        return ReconcileAction.DELETED

    def _update_block(self, event: SourceEvent, block: Block, cache: BlockLookupCache,
                      index: int) -> ReconcileAction:
        changes = block_changes(block, event)
        if not changes:
            return ReconcileAction.UNCHANGED

        self.logger.info(f"[{index}: {event.id}] updating block - changes: {', '.join(changes)}")
        if not self.dry_run:
            updated = dataclasses.replace(block)
            updated.apply_event_times(event)
            self.calendar_service.update_event(self.blocker_calendar_id, updated.id, updated.to_body())
            cache.store(event.id, updated)
        return ReconcileAction.UPDATED

    def _create_block(self, event: SourceEvent, cache: BlockLookupCache, tracker: CreationTracker,
                      index: int) -> ReconcileAction:
        if not tracker.claim(event.id):
            self.logger.info(f"[{index}: {event.id}] block creation already in progress, skipping")
            return ReconcileAction.SKIPPED_IN_PROGRESS

        self.logger.info(f"[{index}: {event.id}] creating block")
        if not self.dry_run:
            block = Block.for_event(event, self.work_email)
            created = self.calendar_service.insert_event(self.blocker_calendar_id, block.to_body())
            if created:
                cache.store(event.id, Block.from_api(created))
        return ReconcileAction.CREATED
