from __future__ import annotations

import queue
import threading
from typing import Generic, Iterator, TypeVar

from ..errors import PollError
from ..models import Activity, Report

T = TypeVar("T")

DEFAULT_CAPACITY = 1
SEND_POLL_SECONDS = 0.1


class EventChannel(Generic[T]):
    """
    单向事件通道（生产者：轮询 worker；消费者：调用方线程）。

    capacity:
      - 默认 1：只有一个待取槽位，消费者不取走，worker 的下一次 send 就会阻塞（背压）
      - None：无界，用于 --once 等单线程场景
    send 可传入 cancel 事件：阻塞期间每 SEND_POLL_SECONDS 检查一次，被取消则放弃投递。
    """

    def __init__(self, name: str, capacity: int | None = DEFAULT_CAPACITY) -> None:
        if capacity is not None and capacity <= 0:
            raise ValueError(f"channel capacity must be positive or None, got {capacity}")
        self.name = name
        self.capacity = capacity
        self._queue: queue.Queue[T] = queue.Queue(maxsize=capacity or 0)

    def send(self, item: T, cancel: threading.Event | None = None) -> bool:
        if cancel is None:
            self._queue.put(item)
            return True
        while not cancel.is_set():
            try:
                self._queue.put(item, timeout=SEND_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def receive(self, timeout: float | None = None) -> T:
        """阻塞读取一条；超时抛 queue.Empty。"""
        return self._queue.get(timeout=timeout)

    def try_receive(self) -> T | None:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def drain(self) -> Iterator[T]:
        while True:
            try:
                yield self._queue.get_nowait()
            except queue.Empty:
                return

    def __len__(self) -> int:
        return self._queue.qsize()

    def __repr__(self) -> str:
        return f"EventChannel({self.name!r}, capacity={self.capacity})"


class PollChannels:
    """三个独立通道：errors / reports / activities。"""

    def __init__(self, capacity: int | None = DEFAULT_CAPACITY) -> None:
        self.errors: EventChannel[PollError] = EventChannel("errors", capacity)
        self.reports: EventChannel[Report] = EventChannel("reports", capacity)
        self.activities: EventChannel[Activity] = EventChannel("activities", capacity)

    def __iter__(self) -> Iterator[EventChannel]:
        return iter((self.errors, self.reports, self.activities))
