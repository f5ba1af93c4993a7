#!/usr/bin/env python3
"""
BlockMirror Property Store

String key/value storage backed by the `script_properties` table. Holds the
run configuration overrides, the serialized sync-token map and the summary
of the last run.
"""

import json
import logging
from typing import Dict, Optional

from sqlalchemy import text

from blockmirror.core.db_manager import DatabaseManager

SYNC_TOKENS_KEY = 'syncTokens'
LAST_RUN_KEY = 'lastRun'


class PropertyStore:
    """Key/value properties persisted across runs."""

    def __init__(self, db: DatabaseManager):
        self.logger = logging.getLogger('property-store')
        self.db = db

    def ensure_schema(self):
        with self.db.get_session() as session:
            session.execute(
                text("""
                    CREATE TABLE IF NOT EXISTS script_properties (
                        property_key VARCHAR(255) PRIMARY KEY,
                        property_value TEXT NOT NULL,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
            )

    def get(self, key: str) -> Optional[str]:
        with self.db.get_session() as session:
            return session.execute(
                text("""
                    SELECT property_value FROM script_properties
                    WHERE property_key = :key
                """),
                {"key": key}
            ).scalar()

    def set(self, key: str, value: str):
        with self.db.get_session() as session:
            session.execute(
                text("""
                    INSERT INTO script_properties (property_key, property_value, updated_at)
                    VALUES (:key, :value, CURRENT_TIMESTAMP)
                    ON CONFLICT (property_key) DO UPDATE SET
                        property_value = EXCLUDED.property_value,
                        updated_at = CURRENT_TIMESTAMP
                """),
                {"key": key, "value": value}
            )
        self.logger.debug(f"Stored property {key}")

    def delete(self, key: str):
        with self.db.get_session() as session:
            session.execute(
                text("DELETE FROM script_properties WHERE property_key = :key"),
                {"key": key}
            )

    def get_properties(self) -> Dict[str, str]:
        with self.db.get_session() as session:
            rows = session.execute(
                text("SELECT property_key, property_value FROM script_properties")
            ).mappings().all()
            return {row['property_key']: row['property_value'] for row in rows}


class SyncTokenStore:
    """Calendar id → sync token map, serialized as JSON under one property."""

    def __init__(self, properties: PropertyStore):
        self.logger = logging.getLogger('sync-tokens')
        self.properties = properties

    def load(self) -> Dict[str, str]:
        raw = self.properties.get(SYNC_TOKENS_KEY)
        if not raw:
            return {}
        try:
            tokens = json.loads(raw)
        except ValueError as e:
            self.logger.warning(f"Error parsing sync tokens, resetting: {e}")
            return {}
        if not isinstance(tokens, dict):
            self.logger.warning("Sync token map is not an object, resetting")
            return {}
        return tokens

    def save(self, tokens: Dict[str, str]):
        self.properties.set(SYNC_TOKENS_KEY, json.dumps(tokens))

    def get_token(self, calendar_id: str) -> Optional[str]:
        return self.load().get(calendar_id)

    def set_token(self, calendar_id: str, token: str):
        tokens = self.load()
        tokens[calendar_id] = token
        self.save(tokens)

    def clear_token(self, calendar_id: str):
        tokens = self.load()
        tokens.pop(calendar_id, None)
        self.save(tokens)

    def reset(self, calendar_id: Optional[str] = None):
        """Drop the token for one calendar, or every token when no calendar is given."""
        if calendar_id:
            self.clear_token(calendar_id)
            self.logger.info(f"Reset sync token for calendar: {calendar_id}")
        else:
            self.save({})
            self.logger.info("Reset all sync tokens")
