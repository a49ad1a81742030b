from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime

from ..models import parse_rfc3339_datetime


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _to_db(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="microseconds")


@dataclass(slots=True)
class SqliteReportState:
    """
    可选的持久化状态表：SQLite

    用途：进程重启后仍能识别“已见过的报告”，避免把重新进入窗口的旧报告当作新报告。

    表设计：
    - report_state：report_id -> last_activity_at（ISO8601 UTC，可为 NULL）

    时间统一以 UTC isoformat 落盘，字符串比较与时间比较一致。
    """

    sqlite_path: str
    _conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        # 连接在 worker 线程内懒加载并复用（:memory: 库也需要同一连接）
        if self._conn is None:
            conn = sqlite3.connect(self.sqlite_path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.row_factory = sqlite3.Row
            self._conn = conn
            self.ensure_schema()
        return self._conn

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS report_state (
                    report_id TEXT PRIMARY KEY,
                    last_activity_at TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get_last_activity(self, report_id: str) -> tuple[datetime | None, bool]:
        conn = self._connect()
        row = conn.execute(
            "SELECT last_activity_at FROM report_state WHERE report_id = ?",
            (report_id,),
        ).fetchone()
        if not row:
            return None, False
        value = row["last_activity_at"]
        return (parse_rfc3339_datetime(value) if value else None), True

    def set_last_activity(self, report_id: str, timestamp: datetime | None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO report_state(report_id, last_activity_at, updated_at)
                VALUES(?, ?, ?)
                ON CONFLICT(report_id) DO UPDATE SET
                    last_activity_at=excluded.last_activity_at,
                    updated_at=excluded.updated_at
                """,
                (report_id, _to_db(timestamp), _utc_now_iso()),
            )

    def prune(self, before: datetime) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM report_state WHERE last_activity_at IS NOT NULL AND last_activity_at < ?",
                (_to_db(before),),
            )
            return cur.rowcount

    def __len__(self) -> int:
        row = self._connect().execute("SELECT COUNT(*) FROM report_state").fetchone()
        return int(row[0])
