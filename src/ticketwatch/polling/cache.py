from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable

DEFAULT_CAPACITY = 100_000


class DedupCache:
    """
    容量 + TTL 双重约束的活动 id 去重集合（LRU）。

    - 命中（存在且未过期）：返回 True，并把该条目移到最近使用端
    - 未命中或已过期：以当前时间写入，返回 False
    - 写入前若已满，先淘汰最久未使用的条目，保证 len <= capacity

    ttl_seconds 必填（通常为 interval + window），从写入时间起算，命中不会延长过期时间。
    clock 默认 time.monotonic，测试可注入。
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._capacity = capacity
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._hits = 0
        self._evictions = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def seen_or_record(self, activity_id: str) -> bool:
        now = self._clock()
        inserted_at = self._entries.get(activity_id)
        if inserted_at is not None:
            if now - inserted_at < self._ttl_seconds:
                self._entries.move_to_end(activity_id)
                self._hits += 1
                return True
            del self._entries[activity_id]

        while len(self._entries) >= self._capacity:
            self._entries.popitem(last=False)
            self._evictions += 1
        self._entries[activity_id] = now
        return False

    def __contains__(self, activity_id: object) -> bool:
        inserted_at = self._entries.get(activity_id)  # type: ignore[arg-type]
        if inserted_at is None:
            return False
        return self._clock() - inserted_at < self._ttl_seconds

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "tracked": len(self._entries),
            "hits": self._hits,
            "evictions": self._evictions,
        }
