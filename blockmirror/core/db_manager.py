#!/usr/bin/env python3
"""
BlockMirror Database Manager

Owns the SQLAlchemy engine and session lifecycle for the property store,
plus the lock that keeps sync runs from overlapping.
"""

import logging
import threading
import zlib
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from blockmirror.config import DATABASE_URL

_process_locks = {}
_process_locks_guard = threading.Lock()


def _process_lock(key: str) -> threading.Lock:
    with _process_locks_guard:
        return _process_locks.setdefault(key, threading.Lock())


class DatabaseManager:
    """Manages database connections for BlockMirror state."""

    def __init__(self, connection_string: Optional[str] = None):
        self.logger = logging.getLogger('db-manager')

        if connection_string is None:
            connection_string = DATABASE_URL

        self.connection_string = connection_string

        engine_options = {
            'pool_pre_ping': True,  # Verify connections before using
            'echo': False,  # Set to True for SQL debugging
        }
        if not connection_string.startswith('sqlite'):
            engine_options.update(pool_size=5, max_overflow=10)

        self.engine = create_engine(self.connection_string, **engine_options)

        # Create session factory
        self.SessionLocal = sessionmaker(bind=self.engine)

        self.logger.info("✅ Database manager initialized")

    @contextmanager
    def get_session(self):
        """Context manager for database sessions."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            self.logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    @contextmanager
    def advisory_lock(self, key: str):
        """
        Hold a named lock for the duration of the context.
        Prevents concurrent execution of critical sections.

        PostgreSQL uses a session-level advisory lock so separate processes
        (CLI and server) exclude each other; other backends fall back to a
        lock shared within this process.
        """
        if not self.connection_string.startswith('postgresql'):
            with _process_lock(key):
                self.logger.debug(f"Acquired process lock: {key}")
                yield
            self.logger.debug(f"Released process lock: {key}")
            return

        # Stable 32-bit id; hash() is salted per process
        lock_id = zlib.crc32(key.encode('utf-8')) % (2**31 - 1)

        session = self.SessionLocal()
        try:
            # Acquire lock (blocks until available)
            session.execute(text("SELECT pg_advisory_lock(:lock_id)"),
                            {"lock_id": lock_id})
            self.logger.debug(f"Acquired advisory lock: {key} (ID: {lock_id})")
            try:
                yield
            finally:
                session.execute(text("SELECT pg_advisory_unlock(:lock_id)"),
                                {"lock_id": lock_id})
                self.logger.debug(f"Released advisory lock: {key} (ID: {lock_id})")
            session.commit()
        except Exception as e:
            self.logger.error(f"Error with advisory lock {key}: {e}")
            session.rollback()
            raise
        finally:
            session.close()


    def test_connection(self) -> bool:
        """Test database connection."""
        try:
            with self.get_session() as session:
                result = session.execute(text("SELECT 1")).scalar()
                if result == 1:
                    self.logger.info("✅ Database connection successful")
                    return True
        except Exception as e:
            self.logger.error(f"❌ Database connection failed: {e}")
        return False
