from __future__ import annotations

from datetime import datetime


class MemoryReportState:
    """
    默认的进程内状态表。只由轮询 worker 线程读写，不加锁。
    """

    def __init__(self) -> None:
        self._last_activity: dict[str, datetime | None] = {}

    def get_last_activity(self, report_id: str) -> tuple[datetime | None, bool]:
        if report_id not in self._last_activity:
            return None, False
        return self._last_activity[report_id], True

    def set_last_activity(self, report_id: str, timestamp: datetime | None) -> None:
        self._last_activity[report_id] = timestamp

    def prune(self, before: datetime) -> int:
        stale = [k for k, ts in self._last_activity.items() if ts is not None and ts < before]
        for k in stale:
            del self._last_activity[k]
        return len(stale)

    def close(self) -> None:
        pass

    def __len__(self) -> int:
        return len(self._last_activity)
