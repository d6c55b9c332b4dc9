"""Durable offline queue for achievement writes, backed by SQLite."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import AchievementRow, QueueEntry

logger = logging.getLogger(__name__)


class OfflineQueue:
    """Keyed queue of pending writes. One entry per (task_id, date)."""

    def __init__(self, db_path: str = "data/offline_queue.db"):
        """Initialize queue storage."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create queue table if it doesn't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS offline_queue (
                    key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
            """)
            conn.commit()
        logger.info(f"Offline queue initialized at {self.db_path}")

    def _to_entry(self, row: sqlite3.Row) -> QueueEntry:
        return QueueEntry(
            key=row["key"],
            payload=AchievementRow.model_validate_json(row["payload"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    def enqueue(self, entry: QueueEntry):
        """Store an entry, replacing any older payload for the same key."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO offline_queue (key, payload, timestamp)
                VALUES (?, ?, ?)
                """,
                (entry.key, entry.payload.model_dump_json(), entry.timestamp.isoformat()),
            )
            conn.commit()
        logger.info(f"Queued offline write: {entry.key}")

    def dequeue(self, key: str) -> bool:
        """
        Remove an entry.

        Returns:
            True if an entry was removed
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM offline_queue WHERE key = ?", (key,))
            conn.commit()
            removed = cursor.rowcount > 0
        if removed:
            logger.info(f"Removed offline write: {key}")
        return removed

    def get(self, key: str) -> Optional[QueueEntry]:
        """Get entry by key."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("SELECT * FROM offline_queue WHERE key = ?", (key,)).fetchone()
            if not row:
                return None
            return self._to_entry(row)

    def list_pending(self) -> list[QueueEntry]:
        """All pending entries, oldest first."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute("SELECT * FROM offline_queue ORDER BY timestamp, key").fetchall()
            return [self._to_entry(row) for row in rows]

    def count(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM offline_queue").fetchone()[0]
