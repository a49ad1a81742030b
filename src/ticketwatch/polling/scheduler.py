from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from ..errors import PollError
from ..models import Activity, Report
from .channels import EventChannel, PollChannels
from .engine import PollEngine, PollReport


logger = logging.getLogger(__name__)


class Poller:
    """
    后台轮询调度器：专用 worker 线程，start 后立即跑一轮，之后按固定间隔触发。
    构造本身不发请求、不启动线程；第一轮在 start() 时执行，而不是在构造时。

    节拍策略（固定频率，不重叠）：
    - 第 k 次触发时间为 start + k * interval
    - 某轮超时跑过了下一个节拍：结束后立即补跑一轮，其余错过的节拍丢弃
    - 同一时刻最多只有一轮在执行，状态表与去重缓存无需加锁

    stop() 为可选的取消：不再开始新一轮，阻塞中的投递在 SEND_POLL_SECONDS 内放弃。
    """

    def __init__(
        self,
        engine: PollEngine,
        interval_seconds: float,
        *,
        name: str = "ticketwatch-poller",
        daemon: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._name = name
        self._daemon = daemon
        self._clock = clock
        self._stop_evt = engine.cancel if engine.cancel is not None else threading.Event()
        engine.cancel = self._stop_evt
        self._thread: threading.Thread | None = None
        self.passes = 0
        self.last_report: PollReport | None = None

    @property
    def channels(self) -> PollChannels:
        return self.engine.channels

    @property
    def errors(self) -> EventChannel[PollError]:
        return self.engine.channels.errors

    @property
    def reports(self) -> EventChannel[Report]:
        return self.engine.channels.reports

    @property
    def activities(self) -> EventChannel[Activity]:
        return self.engine.channels.activities

    def start(self) -> Poller:
        if self._thread and self._thread.is_alive():
            return self
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=self._daemon)
        self._thread.start()
        return self

    def stop(self, timeout: float | None = 2.0) -> None:
        self._stop_evt.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_pass(self) -> None:
        self.passes += 1
        try:
            report = self.engine.poll_once()
        except Exception:  # noqa: BLE001
            logger.exception("poll pass crashed: pass=%d", self.passes)
            return
        self.last_report = report
        if report.reports_emitted or report.activities_emitted or report.detail_errors or report.aborted:
            logger.info(
                "poll pass: pass=%d duration_ms=%d candidates=%d unchanged=%d new_reports=%d new_activities=%d detail_errors=%d aborted=%s",
                self.passes,
                report.duration_ms,
                report.candidates,
                report.skipped_unchanged,
                report.reports_emitted,
                report.activities_emitted,
                report.detail_errors,
                report.aborted,
            )

    def _run(self) -> None:
        interval = self.interval_seconds
        next_tick = self._clock()
        while not self._stop_evt.is_set():
            self._run_pass()

            next_tick += interval
            now = self._clock()
            if now >= next_tick:
                skipped = int((now - next_tick) // interval)
                if skipped:
                    logger.warning("poll pass overran interval: skipped_ticks=%d", skipped)
                next_tick += skipped * interval
            self._stop_evt.wait(max(0.0, next_tick - now))
        logger.info("poller stopped: passes=%d", self.passes)
