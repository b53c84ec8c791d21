"""Simple SQLite store for per-user state blobs."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def data_key(user_id: str) -> str:
    """Storage key for a user's blob."""
    return f"ynaht:user:{user_id}:data"


class BlobDatabase:
    """Simple SQLite database holding one JSON blob per user."""

    def __init__(self, db_path: str = "data/ynaht.db"):
        """Initialize database."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    key TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        logger.info(f"Database initialized at {self.db_path}")

    def get_data(self, user_id: str) -> Optional[dict]:
        """Get a user's stored blob."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT data FROM blobs WHERE key = ?", (data_key(user_id),)
            )
            row = cursor.fetchone()

            if not row:
                return None

            return json.loads(row["data"])

    def put_data(self, user_id: str, data: dict) -> dict:
        """
        Store a user's blob with update metadata.

        Returns:
            The stored blob, including its _meta entry
        """
        updated_at = datetime.now(timezone.utc).isoformat()
        stored = {
            **data,
            "_meta": {"lastUpdatedAt": updated_at, "userId": user_id},
        }

        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO blobs (key, data, updated_at)
                VALUES (?, ?, ?)
                """,
                (data_key(user_id), json.dumps(stored), updated_at),
            )
            conn.commit()
        logger.info(f"Stored data for user {user_id}")
        return stored
