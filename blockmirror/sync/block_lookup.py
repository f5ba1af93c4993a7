#!/usr/bin/env python3
"""
Block lookup side-tables.

- BlockLookupCache: per source pass, remembers whether a block exists for a
  source event id (including "checked, none found")
- CreationTracker: per run, shared by every source, ids whose block creation
  has already been dispatched
- BlockFinder: search-by-text on the blocker calendar filtered to exact
  description matches, memoized through a BlockLookupCache
"""

import logging
from typing import Dict, Optional, Set

from blockmirror.core.models import Block


class BlockLookupCache:
    """Source event id → Block, or None once a lookup found nothing."""

    def __init__(self):
        self._entries: Dict[str, Optional[Block]] = {}

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, event_id: str) -> Optional[Block]:
        return self._entries.get(event_id)

    def store(self, event_id: str, block: Optional[Block]):
        self._entries[event_id] = block

    def mark_absent(self, event_id: str):
        self._entries[event_id] = None


class CreationTracker:
    """Event ids for which a block creation was initiated during this run."""

    def __init__(self):
        self._event_ids: Set[str] = set()

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._event_ids

    def __len__(self) -> int:
        return len(self._event_ids)

    def claim(self, event_id: str) -> bool:
        """Record event_id; False when another source already claimed it."""
        if event_id in self._event_ids:
            return False
        self._event_ids.add(event_id)
        return True


class BlockFinder:
    """Find the block whose description is exactly a source event id."""

    def __init__(self, calendar_service, blocker_calendar_id: str):
        self.logger = logging.getLogger('block-lookup')
        self.calendar_service = calendar_service
        self.blocker_calendar_id = blocker_calendar_id

    def find_block(self, event_id: str, cache: BlockLookupCache, index: int = 0) -> Optional[Block]:
        if event_id in cache:
            block = cache.get(event_id)
            self.logger.debug(f"[{index}: {event_id}] using cached block status: {'found' if block else 'not found'}")
            return block

        self.logger.debug(f"[{index}: {event_id}] checking blocker calendar for matching blocks")
        candidates = self._search(event_id)

        match = None
        for candidate in candidates:
            # Full-text search also returns partial matches
            if candidate.get('description') == event_id:
                match = Block.from_api(candidate)
                break

        if match:
            self.logger.debug(f"[{index}: {event_id}] found exact matching block")
        elif candidates:
            self.logger.debug(f"[{index}: {event_id}] found blocks with similar IDs but no exact match")
        else:
            self.logger.debug(f"[{index}: {event_id}] no blocks found")

        cache.store(event_id, match)
        return match

    def _search(self, event_id: str):
        candidates = []
        page_token = None
        while True:
            result = self.calendar_service.list_events(
                self.blocker_calendar_id,
                search_text=event_id,
                page_token=page_token,
            )
            candidates.extend(result.get('items') or [])
            page_token = result.get('nextPageToken')
            if not page_token:
                return candidates
