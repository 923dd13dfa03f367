"""
Local cache using SQLite.

Durable on-device key-value store for the anonymous (guest) collection.
The whole collection is one JSON array under a fixed key; the slot is
shared by every guest session on this device and is drained by the
sign-in migration.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .types import StampRecord

logger = logging.getLogger(__name__)

# Single slot for the guest collection
STORAGE_KEY = "my_store_passports"


class LocalCache:
    """
    SQLite-backed key-value cache.

    Reads favour availability: corrupt contents load as an empty
    collection instead of raising.
    """

    def __init__(self, path: Path, key: str = STORAGE_KEY):
        """
        Args:
            path: Path to SQLite database file
            key: Storage key holding the collection
        """
        self._db_path = path
        self._key = key
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        self._conn.commit()

    @property
    def key(self) -> str:
        return self._key

    # -------------------------------------------------------------------------
    # Raw key-value access
    # -------------------------------------------------------------------------

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value FROM kv WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, value),
            )
            self._conn.commit()

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self._conn.commit()

    # -------------------------------------------------------------------------
    # Collection access
    # -------------------------------------------------------------------------

    def load(self) -> list[StampRecord]:
        """
        Load the guest collection.

        Returns:
            Stored records; [] when nothing is stored or the data is corrupt
        """
        raw = self.get_item(self._key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Local cache parse error, treating as empty: %s", e)
            return []
        if not isinstance(data, list):
            logger.warning("Local cache holds %s, not a list; treating as empty",
                           type(data).__name__)
            return []
        records = []
        for entry in data:
            if not isinstance(entry, dict):
                logger.warning("Dropping malformed local cache entry: %r", entry)
                continue
            records.append(StampRecord.from_dict(entry))
        return records

    def save(self, records: list[StampRecord]) -> None:
        """Replace the stored collection."""
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False)
        self.set_item(self._key, payload)

    def has_records(self) -> bool:
        return bool(self.load())

    def clear(self) -> None:
        """Drop the stored collection (after migration)."""
        self.remove_item(self._key)

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
