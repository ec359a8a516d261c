"""
KEY-VALUE STORAGE
=================

String key -> string value persistence used by the team resolution cache.

Implementations:
- SQLiteStorage: data/kv_store.db (default)
- MemoryStorage: in-process dict (tests, ephemeral runs)

Calls are blocking; async callers run them through asyncio.to_thread.
"""

import os
import sqlite3
import threading
from typing import Dict, Optional

from config import KV_STORE_DB
from utils.logger import get_logger

logger = get_logger("KV_STORAGE")


class KeyValueStorage:
    """Interface: get_item / set_item / remove_item"""

    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str):
        raise NotImplementedError

    def remove_item(self, key: str):
        raise NotImplementedError


class MemoryStorage(KeyValueStorage):

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str):
        self.items[key] = value

    def remove_item(self, key: str):
        self.items.pop(key, None)


class SQLiteStorage(KeyValueStorage):
    """SQLite-backed store (one row per key)"""

    def __init__(self, db_path: str = KV_STORE_DB):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        """Initialize database"""
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        self.conn.commit()
        logger.debug(f"KV store ready at {self.db_path}")

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str):
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, value)
            )
            self.conn.commit()

    def remove_item(self, key: str):
        with self._lock:
            self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self.conn.commit()

    def close(self):
        with self._lock:
            self.conn.close()
