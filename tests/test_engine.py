import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from ticketwatch.errors import PollError
from ticketwatch.models import Activity, Report, ReportListFilter, ReportPage
from ticketwatch.polling.cache import DedupCache
from ticketwatch.polling.channels import PollChannels
from ticketwatch.polling.engine import PollEngine
from ticketwatch.state.memory_store import MemoryReportState
from ticketwatch.state.sqlite_store import SqliteReportState


T0 = datetime(2026, 2, 10, 12, 0, tzinfo=UTC)
WINDOW = timedelta(seconds=60)


def _activity(activity_id: str, updated_at: datetime | None, *, report_id: str = "1") -> Activity:
    return Activity(
        id=activity_id,
        type="activity-comment",
        message=f"comment {activity_id}",
        internal=False,
        created_at=updated_at,
        updated_at=updated_at,
        report_id=report_id,
    )


def _report(
    report_id: str,
    *,
    created_at: datetime | None,
    last_activity_at: datetime | None,
    activities: tuple[Activity, ...] = (),
) -> Report:
    return Report(
        id=report_id,
        title=f"report {report_id}",
        state="new",
        created_at=created_at,
        last_activity_at=last_activity_at,
        activities=activities,
    )


@dataclass
class FakeClient:
    """
    纯内存 API：
    - list_reports 按 last_activity_at > filter.last_activity_at_gt 过滤（与服务端语义一致），按 page_size 分页
    - 列表结果不带 activities，get_report 返回完整详情
    - fail_pages / fail_details 用于注入失败
    - list_all 忽略时间过滤，模拟服务端返回 last_activity_at 为空的报告
    """

    reports: dict[str, Report] = field(default_factory=dict)
    page_size: int = 100
    fail_pages: set[int] = field(default_factory=set)
    fail_details: set[str] = field(default_factory=set)
    list_all: bool = False
    list_calls: list[tuple[ReportListFilter, int | None]] = field(default_factory=list)
    detail_calls: list[str] = field(default_factory=list)

    def put(self, report: Report) -> None:
        self.reports[report.id] = report

    def list_reports(self, filter: ReportListFilter, page: int | None = None) -> ReportPage:
        self.list_calls.append((filter, page))
        number = page or 1
        if number in self.fail_pages:
            raise RuntimeError(f"page {number} unavailable")
        matching = [
            dataclasses.replace(r, activities=())
            for r in self.reports.values()
            if self.list_all
            or filter.last_activity_at_gt is None
            or (r.last_activity_at is not None and r.last_activity_at > filter.last_activity_at_gt)
        ]
        start = (number - 1) * self.page_size
        chunk = matching[start : start + self.page_size]
        next_page = number + 1 if start + self.page_size < len(matching) else None
        return ReportPage(reports=tuple(chunk), next_page=next_page)

    def get_report(self, report_id: str) -> Report:
        self.detail_calls.append(report_id)
        if report_id in self.fail_details:
            raise RuntimeError(f"report {report_id} unavailable")
        return self.reports[report_id]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _engine(client: FakeClient, **kwargs) -> PollEngine:  # noqa: ANN003
    defaults = dict(
        client=client,
        filter=ReportListFilter(program=("acme",)),
        window=WINDOW,
        state=MemoryReportState(),
        cache=DedupCache(capacity=1000, ttl_seconds=80),
        channels=PollChannels(capacity=None),
    )
    defaults.update(kwargs)
    return PollEngine(**defaults)


def _drain(engine: PollEngine) -> tuple[list[PollError], list[str], list[str]]:
    errors = list(engine.channels.errors.drain())
    reports = [r.id for r in engine.channels.reports.drain()]
    activities = [a.id for a in engine.channels.activities.drain()]
    return errors, reports, activities


def test_new_report_then_idempotent_then_new_activity_only() -> None:
    client = FakeClient()
    a1 = _activity("A1", T0)
    client.put(_report("R1", created_at=T0, last_activity_at=T0, activities=(a1,)))
    engine = _engine(client)

    engine.poll_once(T0 + timedelta(seconds=1))
    assert _drain(engine) == ([], ["R1"], ["A1"])

    report = engine.poll_once(T0 + timedelta(seconds=2))
    assert _drain(engine) == ([], [], [])
    assert report.skipped_unchanged == 1
    assert client.detail_calls == ["R1"]

    t1 = T0 + timedelta(seconds=10)
    a2 = _activity("A2", t1)
    client.put(_report("R1", created_at=T0, last_activity_at=t1, activities=(a1, a2)))
    report = engine.poll_once(t1 + timedelta(seconds=1))
    assert _drain(engine) == ([], [], ["A2"])
    assert report.activities_skipped_seen == 1


def test_no_change_between_passes_emits_nothing() -> None:
    client = FakeClient()
    for i in range(5):
        ts = T0 - timedelta(seconds=i)
        client.put(_report(str(i), created_at=ts, last_activity_at=ts, activities=(_activity(f"a{i}", ts),)))
    engine = _engine(client)

    engine.poll_once(T0 + timedelta(seconds=1))
    _, reports, activities = _drain(engine)
    assert len(reports) == 5
    assert len(activities) == 5

    report = engine.poll_once(T0 + timedelta(seconds=2))
    assert _drain(engine) == ([], [], [])
    assert report.candidates == 5
    assert report.skipped_unchanged == 5
    assert report.details_fetched == 0


def test_new_report_emitted_exactly_once_while_activity_keeps_changing() -> None:
    client = FakeClient()
    engine = _engine(client)
    emitted_reports: list[str] = []
    emitted_activities: list[str] = []
    activities: tuple[Activity, ...] = ()

    for i in range(6):
        ts = T0 + timedelta(seconds=10 * i)
        activities = activities + (_activity(f"A{i}", ts),)
        client.put(_report("R1", created_at=T0, last_activity_at=ts, activities=activities))
        engine.poll_once(ts + timedelta(seconds=1))
        _, reports, acts = _drain(engine)
        emitted_reports.extend(reports)
        emitted_activities.extend(acts)

    assert emitted_reports == ["R1"]
    assert emitted_activities == [f"A{i}" for i in range(6)]


def test_window_boundary_is_inclusive_of_cutoff() -> None:
    now = T0 + timedelta(minutes=5)
    cutoff = now - WINDOW
    client = FakeClient()
    client.put(
        _report(
            "R1",
            created_at=T0 - timedelta(days=1),
            last_activity_at=now - timedelta(seconds=1),
            activities=(
                _activity("on-cutoff", cutoff),
                _activity("before-cutoff", cutoff - timedelta(microseconds=1)),
            ),
        )
    )
    engine = _engine(client)

    report = engine.poll_once(now)
    assert _drain(engine) == ([], [], ["on-cutoff"])
    assert report.activities_skipped_stale == 1
    assert report.cutoff == cutoff


def test_report_created_exactly_at_cutoff_is_not_new() -> None:
    now = T0 + timedelta(minutes=5)
    cutoff = now - WINDOW
    client = FakeClient()
    client.put(_report("R1", created_at=cutoff, last_activity_at=now, activities=()))
    client.put(_report("R2", created_at=cutoff + timedelta(microseconds=1), last_activity_at=now, activities=()))
    engine = _engine(client)

    engine.poll_once(now)
    assert _drain(engine) == ([], ["R2"], [])


def test_activity_in_overlapping_windows_emitted_once() -> None:
    # interval 20s, window 60s：同一活动会出现在连续三轮的窗口里
    clock = FakeClock()
    client = FakeClient()
    engine = _engine(client, cache=DedupCache(capacity=1000, ttl_seconds=80, clock=clock))
    a = _activity("A", T0)
    client.put(_report("R1", created_at=T0 - timedelta(days=3), last_activity_at=T0, activities=(a,)))

    emitted: list[str] = []
    for i in range(4):
        poll_at = T0 + timedelta(seconds=5 + 20 * i)
        # 每轮报告都有新活动，保证 R1 每轮都会被重新拉取详情
        b = _activity(f"B{i}", poll_at - timedelta(seconds=1))
        client.put(
            _report(
                "R1",
                created_at=T0 - timedelta(days=3),
                last_activity_at=b.updated_at,
                activities=(a, b),
            )
        )
        engine.poll_once(poll_at)
        clock.now += 20
        emitted.extend(_drain(engine)[2])

    assert emitted.count("A") == 1
    assert emitted == ["A", "B0", "B1", "B2", "B3"]
    assert len(client.detail_calls) == 4


def test_old_report_reentering_window_is_not_new() -> None:
    client = FakeClient()
    client.put(
        _report(
            "R-old",
            created_at=T0 - timedelta(days=30),
            last_activity_at=T0,
            activities=(_activity("stale", T0 - timedelta(days=30)), _activity("fresh", T0)),
        )
    )
    engine = _engine(client)

    engine.poll_once(T0 + timedelta(seconds=1))
    assert _drain(engine) == ([], [], ["fresh"])


def test_missing_timestamps_and_empty_activities_do_not_crash() -> None:
    client = FakeClient()
    client.put(_report("R1", created_at=None, last_activity_at=T0, activities=()))
    client.put(_report("R2", created_at=None, last_activity_at=T0, activities=(_activity("no-ts", None),)))
    engine = _engine(client)

    report = engine.poll_once(T0 + timedelta(seconds=1))
    assert _drain(engine) == ([], [], [])
    assert report.details_fetched == 2
    assert report.activities_skipped_stale == 1


def test_listing_failure_on_page_two_aborts_whole_pass() -> None:
    client = FakeClient(page_size=1, fail_pages={2})
    for i in range(3):
        client.put(_report(f"R{i}", created_at=T0, last_activity_at=T0, activities=(_activity(f"A{i}", T0),)))
    engine = _engine(client)

    report = engine.poll_once(T0 + timedelta(seconds=1))
    errors, reports, activities = _drain(engine)

    assert len(errors) == 1
    assert errors[0].stage == "list"
    assert errors[0].page == 2
    assert isinstance(errors[0].__cause__, RuntimeError)
    assert reports == []
    assert activities == []
    assert client.detail_calls == []
    assert len(engine.state) == 0
    assert report.aborted is True
    assert report.pages_fetched == 1


def test_listing_paginates_until_no_next_page() -> None:
    client = FakeClient(page_size=2)
    for i in range(5):
        client.put(_report(f"R{i}", created_at=T0, last_activity_at=T0))
    engine = _engine(client)

    report = engine.poll_once(T0 + timedelta(seconds=1))
    assert report.pages_fetched == 3
    assert [p for _, p in client.list_calls] == [None, 2, 3]
    assert _drain(engine)[1] == [f"R{i}" for i in range(5)]


def test_listing_filter_uses_cutoff_and_keeps_scope() -> None:
    client = FakeClient()
    engine = _engine(client, filter=ReportListFilter(program=("acme",), state=("new",)))
    now = T0 + timedelta(minutes=1)

    engine.poll_once(now)
    sent_filter, page = client.list_calls[0]
    assert page is None
    assert sent_filter.last_activity_at_gt == now - WINDOW
    assert sent_filter.program == ("acme",)
    assert sent_filter.state == ("new",)
    assert engine.filter.last_activity_at_gt is None


def test_detail_failure_reports_error_and_is_not_retried_until_change() -> None:
    client = FakeClient(fail_details={"R2"})
    for rid in ("R1", "R2", "R3"):
        client.put(_report(rid, created_at=T0, last_activity_at=T0, activities=(_activity(f"A-{rid}", T0),)))
    engine = _engine(client)

    report = engine.poll_once(T0 + timedelta(seconds=1))
    errors, reports, activities = _drain(engine)
    assert [(e.stage, e.report_id) for e in errors] == [("detail", "R2")]
    assert reports == ["R1", "R3"]
    assert activities == ["A-R1", "A-R3"]
    assert report.detail_errors == 1
    assert engine.state.get_last_activity("R2") == (T0, True)

    client.fail_details.clear()
    engine.poll_once(T0 + timedelta(seconds=2))
    assert _drain(engine) == ([], [], [])
    assert client.detail_calls.count("R2") == 1

    t1 = T0 + timedelta(seconds=5)
    client.put(_report("R2", created_at=T0, last_activity_at=t1, activities=(_activity("A-R2", T0),)))
    engine.poll_once(t1 + timedelta(seconds=1))
    # R2 已在状态表中，不再视为新报告；活动照常去重
    assert _drain(engine) == ([], [], ["A-R2"])


def test_same_last_activity_timestamp_coalesces_changes() -> None:
    # 状态表只比较 last_activity_at：时间精度不足时，同一时刻的后续变化会被跳过
    client = FakeClient()
    a1 = _activity("A1", T0)
    client.put(_report("R1", created_at=T0, last_activity_at=T0, activities=(a1,)))
    engine = _engine(client)
    engine.poll_once(T0 + timedelta(seconds=1))
    _drain(engine)

    client.put(_report("R1", created_at=T0, last_activity_at=T0, activities=(a1, _activity("A2", T0))))
    engine.poll_once(T0 + timedelta(seconds=2))
    assert _drain(engine) == ([], [], [])

    t1 = T0 + timedelta(microseconds=1)
    client.put(_report("R1", created_at=T0, last_activity_at=t1, activities=(a1, _activity("A2", T0))))
    engine.poll_once(T0 + timedelta(seconds=3))
    assert _drain(engine) == ([], [], ["A2"])


def test_prune_state_drops_reports_older_than_cutoff() -> None:
    client = FakeClient()
    client.put(_report("R1", created_at=T0, last_activity_at=T0))
    engine = _engine(client, prune_state=True)

    engine.poll_once(T0 + timedelta(seconds=1))
    assert len(engine.state) == 1

    engine.poll_once(T0 + timedelta(minutes=5))
    assert len(engine.state) == 0


def test_state_kept_without_prune() -> None:
    client = FakeClient()
    client.put(_report("R1", created_at=T0, last_activity_at=T0))
    engine = _engine(client)

    engine.poll_once(T0 + timedelta(seconds=1))
    engine.poll_once(T0 + timedelta(minutes=5))
    assert len(engine.state) == 1


def test_full_channel_blocks_pass_until_consumer_reads() -> None:
    client = FakeClient()
    client.put(
        _report(
            "R1",
            created_at=T0 - timedelta(days=1),
            last_activity_at=T0,
            activities=(_activity("A1", T0), _activity("A2", T0)),
        )
    )
    engine = _engine(client, channels=PollChannels(capacity=1), cancel=threading.Event())

    results = []
    worker = threading.Thread(target=lambda: results.append(engine.poll_once(T0 + timedelta(seconds=1))))
    worker.start()
    time.sleep(0.3)
    assert worker.is_alive()

    assert engine.channels.activities.receive(timeout=1).id == "A1"
    assert engine.channels.activities.receive(timeout=1).id == "A2"
    worker.join(timeout=2)
    assert not worker.is_alive()
    assert results[0].activities_emitted == 2


def test_cancel_abandons_blocked_emission() -> None:
    client = FakeClient()
    client.put(
        _report(
            "R1",
            created_at=T0 - timedelta(days=1),
            last_activity_at=T0,
            activities=(_activity("A1", T0), _activity("A2", T0)),
        )
    )
    cancel = threading.Event()
    engine = _engine(client, channels=PollChannels(capacity=1), cancel=cancel)

    results = []
    worker = threading.Thread(target=lambda: results.append(engine.poll_once(T0 + timedelta(seconds=1))))
    worker.start()
    time.sleep(0.2)
    cancel.set()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert results[0].cancelled is True
    assert results[0].activities_emitted == 1


@pytest.mark.parametrize("state_factory", [MemoryReportState, lambda: SqliteReportState(":memory:")])
def test_prune_keeps_reports_without_last_activity(state_factory) -> None:  # noqa: ANN001
    client = FakeClient(list_all=True)
    client.put(_report("R1", created_at=T0, last_activity_at=None, activities=(_activity("A1", T0),)))
    state = state_factory()
    engine = _engine(client, state=state, prune_state=True)

    emitted_reports: list[str] = []
    emitted_activities: list[str] = []
    for i in range(3):
        engine.poll_once(T0 + timedelta(seconds=1 + 20 * i))
        _, reports, activities = _drain(engine)
        emitted_reports.extend(reports)
        emitted_activities.extend(activities)

    assert emitted_reports == ["R1"]
    assert emitted_activities == ["A1"]
    assert state.get_last_activity("R1") == (None, True)
    assert client.detail_calls == ["R1"]
    state.close()


def test_listing_and_detail_failures_logged_with_traceback(caplog) -> None:  # noqa: ANN001
    caplog.set_level(logging.WARNING, logger="ticketwatch.polling.engine")
    client = FakeClient(fail_details={"R1"})
    client.put(_report("R1", created_at=T0, last_activity_at=T0))
    engine = _engine(client)
    engine.poll_once(T0 + timedelta(seconds=1))

    client.fail_pages.add(1)
    engine.poll_once(T0 + timedelta(seconds=2))

    records = [r for r in caplog.records if r.name == "ticketwatch.polling.engine" and r.levelno == logging.WARNING]
    assert [r.getMessage().split(":")[0] for r in records] == [
        "report detail failed",
        "report listing failed, pass aborted",
    ]
    for record in records:
        assert record.exc_info is not None
        assert isinstance(record.exc_info[1], RuntimeError)
