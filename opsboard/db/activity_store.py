"""SQLite-backed activity log read by the realtime poller."""
import json
import os
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import DataSourceError

SORT_ORDERS = {
    'newest': 'timestamp DESC, rowid DESC',
    'oldest': 'timestamp ASC, rowid ASC',
}

_COLUMNS = 'id,type,description,status,timestamp,duration_ms,tokens_used,metadata'


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class ActivityStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        parent = os.path.dirname(db_path)
        if db_path != ':memory:' and parent:
            os.makedirs(parent, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_tables()

    def _exec(self, sql: str, params: tuple = ()):
        cur = self.conn.cursor()
        cur.execute(sql, params)
        self.conn.commit()
        return cur

    def _read(self, sql: str, params: tuple = ()):
        try:
            return self._exec(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DataSourceError(f'activity read failed: {e}') from e

    def _init_tables(self):
        self._exec("""
        CREATE TABLE IF NOT EXISTS activities (
          id TEXT PRIMARY KEY,
          type TEXT NOT NULL,
          description TEXT NOT NULL,
          status TEXT NOT NULL DEFAULT 'success',
          timestamp TEXT NOT NULL,
          duration_ms INTEGER,
          tokens_used INTEGER,
          metadata TEXT
        );
        """)
        self._exec("CREATE INDEX IF NOT EXISTS idx_activities_timestamp ON activities(timestamp);")

    @staticmethod
    def _row_to_dict(row) -> Dict[str, Any]:
        d = dict(row)
        try:
            d['metadata'] = json.loads(d.get('metadata') or '{}')
        except ValueError:
            d['metadata'] = {}
        return d

    def log_activity(self, type: str, description: str, status: str = 'success',
                     metadata: Optional[Dict] = None, duration_ms: Optional[int] = None,
                     tokens_used: Optional[int] = None, timestamp: Optional[str] = None) -> str:
        aid = str(uuid.uuid4())
        self._exec(
            "INSERT INTO activities(id,type,description,status,timestamp,duration_ms,tokens_used,metadata) "
            "VALUES (?,?,?,?,?,?,?,?)",
            (aid, type, description, status, timestamp or _now_iso(), duration_ms, tokens_used,
             json.dumps(metadata or {})))
        return aid

    def get_activities(self, limit: int = 50, sort: str = 'newest', status: Optional[str] = None) -> Dict[str, Any]:
        """Return ``{"activities": [...], "total": n}``; ``total`` ignores ``limit``."""
        order = SORT_ORDERS.get(sort)
        if order is None:
            raise ValueError(f'unknown sort order: {sort}')
        limit = max(0, int(limit))
        if status:
            rows = self._read(f"SELECT {_COLUMNS} FROM activities WHERE status = ? ORDER BY {order} LIMIT ?",
                              (status, limit))
            total = self._read("SELECT COUNT(1) AS c FROM activities WHERE status = ?", (status,))[0]['c']
        else:
            rows = self._read(f"SELECT {_COLUMNS} FROM activities ORDER BY {order} LIMIT ?", (limit,))
            total = self._read("SELECT COUNT(1) AS c FROM activities")[0]['c']
        return {'activities': [self._row_to_dict(r) for r in rows], 'total': total}

    def newest(self, limit: int = 10, sort: str = 'newest') -> List[Dict[str, Any]]:
        """Query callable handed to the poller."""
        return self.get_activities(limit=limit, sort=sort)['activities']

    def get_activity_by_id(self, activity_id: str) -> Optional[Dict[str, Any]]:
        rows = self._read(f"SELECT {_COLUMNS} FROM activities WHERE id = ?", (activity_id,))
        return self._row_to_dict(rows[0]) if rows else None

    def update_activity_status(self, activity_id: str, status: str, metadata: Optional[Dict] = None) -> bool:
        if metadata is None:
            cur = self._exec("UPDATE activities SET status = ? WHERE id = ?", (status, activity_id))
        else:
            cur = self._exec("UPDATE activities SET status = ?, metadata = ? WHERE id = ?",
                             (status, json.dumps(metadata), activity_id))
        return cur.rowcount > 0

    def close(self):
        # every write commits in _exec; closing twice is a no-op
        self.conn.close()
