#!/usr/bin/env python3
"""
Recurrence Resolver

Decides whether a materialized instance of a recurring series gets its own
block. A series whose parent already has a block is covered by that block;
an un-parented instance is mirrored individually once it falls within the
forward horizon.
"""

import logging
import math
from datetime import datetime
from typing import Callable, Optional

import pytz

from blockmirror.config import RECURRING_INSTANCE_HORIZON_DAYS
from blockmirror.core.models import SourceEvent
from blockmirror.sync.block_lookup import BlockFinder, BlockLookupCache

SECONDS_PER_DAY = 24 * 60 * 60


def days_until(event: SourceEvent, now: datetime) -> Optional[int]:
    """Whole days (floored) from now to the event start, None without a start."""
    if event.start is None:
        return None
    delta = event.start.start_instant() - now
    return math.floor(delta.total_seconds() / SECONDS_PER_DAY)


class RecurrenceResolver:

    def __init__(self, block_finder: BlockFinder,
                 horizon_days: int = RECURRING_INSTANCE_HORIZON_DAYS,
                 now: Optional[Callable[[], datetime]] = None):
        self.logger = logging.getLogger('recurrence-resolver')
        self.block_finder = block_finder
        self.horizon_days = horizon_days
        self._now = now or (lambda: datetime.now(pytz.UTC))

    def should_reconcile(self, event: SourceEvent, cache: BlockLookupCache, index: int = 0) -> bool:
        """False when the event is an instance that must be suppressed."""
        if not event.is_recurring_instance:
            return True

        parent_id = event.parent_id
        self.logger.debug(f"[{index}: {event.id}] detected recurring instance of {parent_id}")

        if self.block_finder.find_block(parent_id, cache, index):
            self.logger.info(f"[{index}: {event.id}] parent event has a block, skipping instance")
            return False

        days = days_until(event, self._now())
        if days is not None and days > self.horizon_days:
            self.logger.info(
                f"[{index}: {event.id}] instance is more than {self.horizon_days} days "
                f"in the future ({days} days), skipping"
            )
            return False

        self.logger.debug(f"[{index}: {event.id}] parent event does not have a block, processing instance")
        return True
