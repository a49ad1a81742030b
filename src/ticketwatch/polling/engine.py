from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from ..api.base import ReportClient
from ..errors import PollError
from ..models import Report, ReportListFilter, utc_now
from ..state.store import ReportStateStore
from .cache import DedupCache
from .channels import EventChannel, PollChannels


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PollReport:
    started_at: datetime
    cutoff: datetime
    duration_ms: int = 0
    pages_fetched: int = 0
    candidates: int = 0
    skipped_unchanged: int = 0
    details_fetched: int = 0
    detail_errors: int = 0
    reports_emitted: int = 0
    activities_emitted: int = 0
    activities_skipped_stale: int = 0
    activities_skipped_seen: int = 0
    aborted: bool = False
    cancelled: bool = False


class _Cancelled(Exception):
    pass


class PollEngine:
    """
    单轮轮询（poll pass）的执行器：

    List(last_activity_at > now - window, 分页) -> 状态表短路 -> Get(detail)
    -> 新报告判定 -> 活动窗口过滤 + 去重 -> 投递到通道

    状态表与去重缓存只由调用 poll_once 的线程修改；同一实例不要并发调用 poll_once。
    """

    def __init__(
        self,
        *,
        client: ReportClient,
        filter: ReportListFilter,
        window: timedelta,
        state: ReportStateStore,
        cache: DedupCache,
        channels: PollChannels,
        prune_state: bool = False,
        cancel: threading.Event | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.filter = filter
        self.window = window
        self.state = state
        self.cache = cache
        self.channels = channels
        self.prune_state = prune_state
        self.cancel = cancel
        self._now = now

    def poll_once(self, now: datetime | None = None) -> PollReport:
        now = now or self._now()
        cutoff = now - self.window
        report = PollReport(started_at=now, cutoff=cutoff)
        start_t = time.monotonic()
        try:
            self._poll(cutoff, report)
        except _Cancelled:
            report.cancelled = True
            logger.info("poll pass cancelled: cutoff=%s", cutoff.isoformat())
        report.duration_ms = int((time.monotonic() - start_t) * 1000)

        if self.prune_state and not report.aborted and not report.cancelled:
            pruned = self.state.prune(cutoff)
            if pruned:
                logger.debug("report state pruned: removed=%d remaining=%d", pruned, len(self.state))

        logger.debug("poll pass done: %s", dataclasses.asdict(report))
        return report

    def _poll(self, cutoff: datetime, report: PollReport) -> None:
        candidates = self._list_candidates(cutoff, report)
        if candidates is None:
            report.aborted = True
            return
        report.candidates = len(candidates)

        for candidate in candidates:
            prev_last_activity, found = self.state.get_last_activity(candidate.id)
            if found and prev_last_activity == candidate.last_activity_at:
                report.skipped_unchanged += 1
                continue
            # 先更新状态再拉详情：详情失败也不会在后续轮次反复重拉未变化的报告
            self.state.set_last_activity(candidate.id, candidate.last_activity_at)

            try:
                detail = self.client.get_report(candidate.id)
            except Exception as e:  # noqa: BLE001
                report.detail_errors += 1
                logger.warning("report detail failed: report_id=%s error=%s", candidate.id, e, exc_info=True)
                err = PollError("detail", f"get report {candidate.id}: {e}", report_id=candidate.id)
                err.__cause__ = e
                self._emit(self.channels.errors, err)
                continue
            report.details_fetched += 1

            if not found and detail.created_at is not None and detail.created_at > cutoff:
                self._emit(self.channels.reports, detail)
                report.reports_emitted += 1

            for activity in detail.activities:
                # cutoff 本身算在窗口内
                if activity.updated_at is None or activity.updated_at < cutoff:
                    report.activities_skipped_stale += 1
                    continue
                if self.cache.seen_or_record(activity.id):
                    report.activities_skipped_seen += 1
                    continue
                self._emit(self.channels.activities, activity)
                report.activities_emitted += 1

    def _list_candidates(self, cutoff: datetime, report: PollReport) -> list[Report] | None:
        filter = dataclasses.replace(self.filter, last_activity_at_gt=cutoff)
        candidates: list[Report] = []
        page: int | None = None
        while True:
            try:
                result = self.client.list_reports(filter, page)
            except Exception as e:  # noqa: BLE001
                logger.warning("report listing failed, pass aborted: page=%s error=%s", page or 1, e, exc_info=True)
                err = PollError("list", f"list reports page {page or 1}: {e}", page=page or 1)
                err.__cause__ = e
                self._emit(self.channels.errors, err)
                return None
            report.pages_fetched += 1
            candidates.extend(result.reports)
            if result.next_page is None:
                return candidates
            page = result.next_page

    def _emit(self, channel: EventChannel, item: object) -> None:
        if not channel.send(item, self.cancel):
            raise _Cancelled()
