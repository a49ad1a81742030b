from __future__ import annotations

from datetime import datetime
from typing import Protocol


class ReportStateStore(Protocol):
    """
    报告状态表接口：report_id -> 最近一次观察到的 last_activity_at。

    - get_last_activity 返回 (timestamp, found)；timestamp 可能为 None（API 未返回）
    - set_last_activity 覆盖写入
    - prune 删除 last_activity 早于 before 的条目，返回删除条数；last_activity 为空的条目不删除
    - close 释放底层资源
    """

    def get_last_activity(self, report_id: str) -> tuple[datetime | None, bool]: ...

    def set_last_activity(self, report_id: str, timestamp: datetime | None) -> None: ...

    def prune(self, before: datetime) -> int: ...

    def close(self) -> None: ...

    def __len__(self) -> int: ...
