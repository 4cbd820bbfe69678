from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional


class AuditLog:
    """
    Optional SQLite journal of transaction phase transitions.

    OFF unless a path is given or `AUDIT_DB_PATH` is set. One row per
    transition, keyed by network and handle, so a support engineer can replay
    what the coordinator saw. Never store key material here.
    """

    def __init__(self, db_path: str | None = None) -> None:
        self._explicit_path = db_path
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def enabled(self) -> bool:
        return bool(self._db_path())

    def append(
        self,
        *,
        ts_ms: int,
        network: str,
        event: str,
        phase: str,
        handle: str | None = None,
        operation: str | None = None,
        error_code: str | None = None,
        summary: Dict[str, Any] | None = None,
    ) -> None:
        conn = self._get_conn()
        if conn is None:
            return
        payload = json.dumps(summary or {}, sort_keys=True, default=str)
        with self._lock:
            conn.execute(
                """
                INSERT INTO tx_events(ts_ms, network, event, phase, handle, operation, error_code, summary_json)
                VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (int(ts_ms), str(network), str(event), str(phase), handle, operation, error_code, payload),
            )
            conn.commit()

    def recent(self, *, network: str | None = None, limit: int = 50) -> List[Dict[str, Any]]:
        conn = self._get_conn()
        if conn is None:
            return []
        sql = "SELECT ts_ms, network, event, phase, handle, operation, error_code, summary_json FROM tx_events"
        params: tuple = ()
        if network:
            sql += " WHERE network = ?"
            params = (network,)
        sql += " ORDER BY id DESC LIMIT ?"
        params = params + (int(limit),)
        with self._lock:
            rows = conn.execute(sql, params).fetchall()
        return [
            {
                "ts_ms": r[0],
                "network": r[1],
                "event": r[2],
                "phase": r[3],
                "handle": r[4],
                "operation": r[5],
                "error_code": r[6],
                "summary": json.loads(r[7]),
            }
            for r in rows
        ]

    def _db_path(self) -> str:
        if self._explicit_path:
            return self._explicit_path
        return (os.getenv("AUDIT_DB_PATH") or "").strip()

    def _get_conn(self) -> Optional[sqlite3.Connection]:
        path = self._db_path()
        if not path:
            return None
        with self._lock:
            if self._conn is None:
                self._conn = sqlite3.connect(path, check_same_thread=False)
                if path != ":memory:":
                    self._conn.execute("PRAGMA journal_mode=WAL;")
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS tx_events(
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        ts_ms INTEGER NOT NULL,
                        network TEXT NOT NULL,
                        event TEXT NOT NULL,
                        phase TEXT NOT NULL,
                        handle TEXT,
                        operation TEXT,
                        error_code TEXT,
                        summary_json TEXT NOT NULL
                    )
                    """
                )
                self._conn.commit()
            return self._conn


def now_ms() -> int:
    return int(time.time() * 1000)
