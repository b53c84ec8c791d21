"""Local durable key-value storage: app state, user id and offline queue."""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from ..engine.models import AppState, Timestamp

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "ynaht_"

APP_STATE_KEY = "appState_v2"
USER_ID_KEY = "userId"
OFFLINE_QUEUE_KEY = "offlineQueue"


class OfflineQueueItem(BaseModel):
    """The single pending write kept while offline."""

    data: dict
    timestamp: Timestamp


class LocalStore:
    """Namespaced key-value store backed by SQLite."""

    def __init__(self, db_path: str = "data/local.db"):
        """Initialize store."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Create the storage table if it doesn't exist."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()
        logger.info(f"Local store initialized at {self.db_path}")

    def _key(self, key: str) -> str:
        return f"{STORAGE_PREFIX}{key}"

    def get_raw(self, key: str) -> Optional[str]:
        """Get the stored string for a key."""
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM storage WHERE key = ?", (self._key(key),)
            ).fetchone()
        return row[0] if row else None

    def set_raw(self, key: str, value: str):
        """Store a string under a key, replacing any previous value."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO storage (key, value) VALUES (?, ?)",
                (self._key(key), value),
            )
            conn.commit()

    def save(self, key: str, data: Any):
        """Serialize data as JSON and store it."""
        try:
            self.set_raw(key, json.dumps(data, default=str))
        except (TypeError, ValueError, sqlite3.Error) as e:
            logger.error(f"Error saving to storage: {key}: {e}")

    def load(self, key: str, default: Any = None) -> Any:
        """
        Load JSON data for a key.

        Returns:
            Parsed data, or default when missing or unreadable
        """
        try:
            serialized = self.get_raw(key)
            if serialized is None:
                return default
            return json.loads(serialized)
        except (ValueError, sqlite3.Error) as e:
            logger.error(f"Error loading from storage: {key}: {e}")
            return default

    def remove(self, key: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM storage WHERE key = ?", (self._key(key),))
            conn.commit()

    def keys(self) -> list[str]:
        """All keys in this store's namespace, without the prefix."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT key FROM storage WHERE key LIKE ?", (f"{STORAGE_PREFIX}%",)
            ).fetchall()
        return [row[0][len(STORAGE_PREFIX):] for row in rows]

    def clear_all(self):
        """Remove every key in this store's namespace."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "DELETE FROM storage WHERE key LIKE ?", (f"{STORAGE_PREFIX}%",)
            )
            conn.commit()
        logger.info("Cleared local storage")

    # App state

    def load_app_state(self) -> Optional[AppState]:
        return AppState.from_blob(self.load(APP_STATE_KEY))

    def save_app_state(self, state: AppState):
        self.save(APP_STATE_KEY, state.to_blob())

    # User id

    def get_user_id(self) -> str:
        """Get the user id, creating and storing a new UUID4 on first use."""
        user_id = self.get_raw(USER_ID_KEY)
        if not user_id:
            user_id = str(uuid.uuid4())
            self.set_raw(USER_ID_KEY, user_id)
            logger.info(f"Generated new user id: {user_id}")
        return user_id

    def get_existing_user_id(self) -> Optional[str]:
        return self.get_raw(USER_ID_KEY)

    def set_user_id(self, user_id: str):
        self.set_raw(USER_ID_KEY, user_id)

    def clear_user_id(self):
        self.remove(USER_ID_KEY)

    # Offline queue (a single slot, not a list)

    def get_offline_queue(self) -> Optional[OfflineQueueItem]:
        raw = self.load(OFFLINE_QUEUE_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return OfflineQueueItem.model_validate(raw)
        except ValueError as e:
            logger.error(f"Discarding unreadable offline queue: {e}")
            return None

    def save_to_offline_queue(self, data: dict, timestamp: datetime):
        """Queue a write, overwriting any previously queued one."""
        item = OfflineQueueItem(data=data, timestamp=timestamp)
        self.save(OFFLINE_QUEUE_KEY, item.model_dump(mode="json"))
        logger.info(f"Queued offline write at {timestamp.isoformat()}")

    def clear_offline_queue(self):
        self.remove(OFFLINE_QUEUE_KEY)
