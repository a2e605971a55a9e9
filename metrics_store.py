#!/usr/bin/env python3
"""
Metrics Store
SQLite-backed key/value store with per-key expiry, used for metric
snapshots and the webhook delivery history
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

from models import SNAPSHOT_PREFIX, MetricsSnapshot, WebhookHistoryEntry

logger = logging.getLogger(__name__)

SNAPSHOT_TTL_SECONDS = 7 * 24 * 60 * 60
WEBHOOK_HISTORY_KEY = 'webhook:history'
MAX_HISTORY_ENTRIES = 100

# epoch ms parsed back out of a snapshot key
_SNAPSHOT_TS_SQL = f"CAST(substr(key, {len(SNAPSHOT_PREFIX) + 1}) AS INTEGER)"


class MetricsStore:
    """
    SQLite-based key/value store.

    Features:
    - Persistent storage (survives daemon restarts)
    - Optional TTL per key; expired keys are invisible and purged lazily
    - Prefix scan, newest key first
    """

    def __init__(self, db_path='/var/lib/containerwatch/metrics.db'):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = str(db_path)
        self._init_db()
        logger.info(f"[MetricsStore] Initialized (db={self.db_path})")

    def _connect(self):
        return sqlite3.connect(self.db_path)

    @staticmethod
    def _like_prefix(prefix: str) -> str:
        """LIKE pattern matching keys that start with `prefix` literally"""
        return prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_') + '%'

    def _init_db(self):
        """Initialize SQLite database with schema"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL
            )
        ''')
        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_expires_at
            ON kv_store(expires_at)
        ''')
        conn.commit()
        conn.close()

        logger.debug("[MetricsStore] Database schema initialized")

    def put(self, key: str, value: str, ttl: Optional[int] = None):
        """
        Store a value.

        Args:
            key: Key name
            value: Serialized value
            ttl: Seconds until the key expires (None = never)
        """
        expires_at = time.time() + ttl if ttl else None
        conn = self._connect()
        try:
            conn.execute('''
                INSERT OR REPLACE INTO kv_store (key, value, expires_at)
                VALUES (?, ?, ?)
            ''', (key, value, expires_at))
            conn.commit()
            logger.debug(f"[MetricsStore] Stored {key}")
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute('''
                SELECT value FROM kv_store
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
            ''', (key, time.time())).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def delete(self, key: str):
        conn = self._connect()
        try:
            conn.execute('DELETE FROM kv_store WHERE key = ?', (key,))
            conn.commit()
        finally:
            conn.close()

    def scan(self, prefix: str, limit: Optional[int] = None) -> List[Tuple[str, str]]:
        """
        Get live keys starting with `prefix`, newest first.

        Returns:
            List of (key, value) tuples
        """
        pattern = self._like_prefix(prefix)
        query = '''
            SELECT key, value FROM kv_store
            WHERE key LIKE ? ESCAPE '\\' AND (expires_at IS NULL OR expires_at > ?)
            ORDER BY rowid DESC
        '''
        params = [pattern, time.time()]
        if limit is not None:
            query += ' LIMIT ?'
            params.append(int(limit))

        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        finally:
            conn.close()

    def delete_expired(self) -> int:
        """
        Purge expired keys.

        Returns:
            int: Number of rows removed
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                'DELETE FROM kv_store WHERE expires_at IS NOT NULL AND expires_at <= ?',
                (time.time(),),
            )
            conn.commit()
            if cursor.rowcount:
                logger.info(f"[MetricsStore] Purged {cursor.rowcount} expired keys")
            return cursor.rowcount
        except Exception as e:
            logger.error(f"[MetricsStore] Error purging expired keys: {e}")
            return 0
        finally:
            conn.close()

    def clear_prefix(self, prefix: str) -> int:
        """
        Delete every key starting with `prefix`.

        Returns:
            int: Number of rows removed
        """
        conn = self._connect()
        try:
            cursor = conn.execute(
                "DELETE FROM kv_store WHERE key LIKE ? ESCAPE '\\'", (self._like_prefix(prefix),))
            conn.commit()
            return cursor.rowcount
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def save_snapshot(self, snapshot: MetricsSnapshot, ttl=SNAPSHOT_TTL_SECONDS):
        self.put(snapshot.key, snapshot.to_json(), ttl)

    def latest_snapshots(self, limit=200, since: Optional[int] = None) -> List[MetricsSnapshot]:
        """
        The newest `limit` snapshots taken at or after `since` (epoch ms).

        Returns:
            Snapshots in ascending timestamp order
        """
        query = '''
            SELECT key, value FROM kv_store
            WHERE key LIKE ? ESCAPE '\\' AND (expires_at IS NULL OR expires_at > ?)
        '''
        params = [self._like_prefix(SNAPSHOT_PREFIX), time.time()]
        if since is not None:
            query += f' AND {_SNAPSHOT_TS_SQL} >= ?'
            params.append(int(since))
        query += f' ORDER BY {_SNAPSHOT_TS_SQL} DESC LIMIT ?'
        params.append(int(limit))

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()

        snapshots = []
        for key, raw in reversed(rows):
            try:
                snapshots.append(MetricsSnapshot.from_json(raw))
            except (ValueError, KeyError, TypeError) as e:
                logger.error(f"[MetricsStore] Corrupt snapshot {key}: {e}")
        return snapshots

    def info(self) -> dict:
        """Snapshot count, stored size in bytes and the oldest/newest timestamps"""
        conn = self._connect()
        try:
            count, size, oldest, newest = conn.execute(f'''
                SELECT COUNT(*), COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0),
                       COALESCE(MIN({_SNAPSHOT_TS_SQL}), 0), COALESCE(MAX({_SNAPSHOT_TS_SQL}), 0)
                FROM kv_store
                WHERE key LIKE ? ESCAPE '\\' AND (expires_at IS NULL OR expires_at > ?)
            ''', (self._like_prefix(SNAPSHOT_PREFIX), time.time())).fetchone()
        finally:
            conn.close()
        return {
            'count': count,
            'estimatedSize': size,
            'oldestTimestamp': oldest,
            'newestTimestamp': newest,
        }


class WebhookHistory:
    """Most-recent-first list of webhook attempts, capped at max_entries"""

    def __init__(self, store: MetricsStore, max_entries=MAX_HISTORY_ENTRIES):
        self.store = store
        self.max_entries = max_entries
        # concurrent webhook deliveries append from several threads
        self._lock = threading.Lock()

    def _load(self) -> list:
        raw = self.store.get(WEBHOOK_HISTORY_KEY)
        if not raw:
            return []
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"[WebhookHistory] Invalid JSON in history, resetting: {e}")
            return []

    def append(self, entry: WebhookHistoryEntry):
        with self._lock:
            history = self._load()
            history.insert(0, entry.to_dict())
            del history[self.max_entries:]
            self.store.put(WEBHOOK_HISTORY_KEY, json.dumps(history))

    def list(self) -> List[WebhookHistoryEntry]:
        with self._lock:
            return [WebhookHistoryEntry.from_dict(item) for item in self._load()]

    def clear(self):
        with self._lock:
            self.store.delete(WEBHOOK_HISTORY_KEY)
