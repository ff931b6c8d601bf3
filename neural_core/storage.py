"""
Snapshot Store Module
Persists the brain snapshot in a single keyed PostgreSQL slot, with an
in-memory fallback when persistent storage is disabled or unavailable.
"""

import json
import logging
from contextlib import closing
from typing import Optional

import psycopg2

from .config import BrainSettings
from .model import migrate_snapshot
from .types import NeuralBrainSnapshot

logger = logging.getLogger(__name__)


def serialize_snapshot(snapshot: NeuralBrainSnapshot) -> str:
    return json.dumps(snapshot.to_dict(), separators=(",", ":"))


class SnapshotStore:
    """
    Owner of the persisted brain snapshot

    The in-memory copy mirrors the last snapshot saved or loaded and lives
    as long as the store. It is only cleared by reset().
    """

    def __init__(self, settings: Optional[BrainSettings] = None):
        self.settings = settings or BrainSettings.from_environment()
        self.storage_key = self.settings.storage_key
        self._memory_snapshot: Optional[NeuralBrainSnapshot] = None
        self._table_ready = False

        if not self.settings.persistence_enabled:
            logger.info("Persistent storage disabled, using in-memory brain snapshot")

    def _get_connection(self):
        """Get database connection"""
        return psycopg2.connect(**self.settings.db_params)

    def _ensure_table(self, cursor):
        """Create snapshot table if it doesn't exist"""
        if self._table_ready:
            return
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS brain_snapshots (
                storage_key VARCHAR(255) PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    def _read_raw(self) -> Optional[str]:
        with closing(self._get_connection()) as conn, conn:
            with conn.cursor() as cursor:
                self._ensure_table(cursor)
                cursor.execute("""
                    SELECT payload FROM brain_snapshots
                    WHERE storage_key = %s
                """, (self.storage_key,))
                row = cursor.fetchone()
                conn.commit()
                self._table_ready = True
        return row[0] if row else None

    def _write_raw(self, payload: str):
        with closing(self._get_connection()) as conn, conn:
            with conn.cursor() as cursor:
                self._ensure_table(cursor)
                cursor.execute("""
                    INSERT INTO brain_snapshots (storage_key, payload)
                    VALUES (%s, %s)
                    ON CONFLICT (storage_key)
                    DO UPDATE SET payload = EXCLUDED.payload,
                                 updated_at = CURRENT_TIMESTAMP
                """, (self.storage_key, payload))
                conn.commit()
                self._table_ready = True

    def _migrate_in_memory(self) -> Optional[NeuralBrainSnapshot]:
        self._memory_snapshot = migrate_snapshot(self._memory_snapshot)
        return self._memory_snapshot

    def load(self) -> Optional[NeuralBrainSnapshot]:
        """
        Load the snapshot, migrating older shapes on read

        Corrupt, unmigratable or unreachable persisted data resolves to the
        in-memory copy (possibly None). Never raises.
        """
        if not self.settings.persistence_enabled:
            return self._migrate_in_memory()

        try:
            raw = self._read_raw()
        except psycopg2.Error as e:
            logger.error(f"Failed to read brain snapshot: {e}")
            return self._migrate_in_memory()

        if not raw:
            return self._migrate_in_memory()

        try:
            migrated = migrate_snapshot(json.loads(raw))
        except (ValueError, RecursionError) as e:
            # RecursionError: pathologically nested payloads
            logger.warning(f"Discarding corrupt brain snapshot: {e}")
            return self._migrate_in_memory()

        if migrated is None:
            logger.warning("Discarding brain snapshot without usable weights")
            return self._migrate_in_memory()

        self._memory_snapshot = migrated

        serialized = serialize_snapshot(migrated)
        if serialized != raw:
            try:
                self._write_raw(serialized)
                logger.info(f"Migrated brain snapshot to version {migrated.version}")
            except psycopg2.Error as e:
                logger.error(f"Failed to write migrated brain snapshot: {e}")

        return migrated

    def save(self, snapshot: NeuralBrainSnapshot):
        """Store snapshot; storage failures keep the in-memory copy"""
        self._memory_snapshot = snapshot
        if not self.settings.persistence_enabled:
            return

        try:
            self._write_raw(serialize_snapshot(snapshot))
        except psycopg2.Error as e:
            logger.error(f"Failed to store brain snapshot: {e}")

    def reset(self):
        """Forget the snapshot, both persisted and in memory"""
        self._memory_snapshot = None
        if not self.settings.persistence_enabled:
            return

        try:
            with closing(self._get_connection()) as conn, conn:
                with conn.cursor() as cursor:
                    self._ensure_table(cursor)
                    cursor.execute("""
                        DELETE FROM brain_snapshots
                        WHERE storage_key = %s
                    """, (self.storage_key,))
                    conn.commit()
                    self._table_ready = True
        except psycopg2.Error as e:
            logger.error(f"Failed to delete brain snapshot: {e}")


_default_store: Optional[SnapshotStore] = None


def get_default_store() -> SnapshotStore:
    """Process-wide store, created lazily from the environment"""
    global _default_store
    if _default_store is None:
        _default_store = SnapshotStore()
    return _default_store


def set_default_store(store: Optional[SnapshotStore]):
    """Replace the process-wide store (None recreates it on next use)"""
    global _default_store
    _default_store = store
