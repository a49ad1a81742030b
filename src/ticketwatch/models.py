from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Mapping


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析常见的 RFC3339/ISO8601 时间串为带 tzinfo 的 datetime。

    兼容：
    - 2016-02-02T04:05:06Z
    - 2016-02-02T04:05:06+00:00
    - 2016-02-02T04:05:06.123Z
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_rfc3339_datetime(value: datetime) -> str:
    """
    输出 API 过滤参数使用的 UTC 时间串（Z 结尾）。
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _opt_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    return parse_rfc3339_datetime(value)


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True, slots=True)
class Activity:
    """
    报告下的一条活动记录（评论、状态变化、赏金等）。

    轮询引擎只读取 id / updated_at；其余字段用于展示。
    """

    id: str
    type: str
    message: str | None
    internal: bool
    created_at: datetime | None
    updated_at: datetime | None
    report_id: str | None = None
    raw: Mapping[str, Any] | None = None

    @classmethod
    def from_resource(cls, data: Mapping[str, Any], *, report_id: str | None = None) -> Activity:
        """
        从 JSON:API resource object 构建（attributes 扁平化）。
        """
        attrs = data.get("attributes")
        if not isinstance(attrs, dict):
            attrs = {}
        return cls(
            id=str(data.get("id") or ""),
            type=str(data.get("type") or ""),
            message=_opt_str(attrs.get("message")),
            internal=bool(attrs.get("internal", False)),
            created_at=_opt_datetime(attrs.get("created_at")),
            updated_at=_opt_datetime(attrs.get("updated_at")),
            report_id=report_id,
            raw=data,
        )


@dataclass(frozen=True, slots=True)
class Report:
    """
    统一报告模型：列表接口返回的报告不带 activities，详情接口返回完整活动历史。
    """

    id: str
    title: str | None
    state: str | None
    created_at: datetime | None
    last_activity_at: datetime | None
    activities: tuple[Activity, ...] = ()
    raw: Mapping[str, Any] | None = field(default=None, compare=False)

    @classmethod
    def from_resource(cls, data: Mapping[str, Any]) -> Report:
        """
        解析 JSON:API 报告对象：

        {
          "id": "1337", "type": "report",
          "attributes": {"title": ..., "state": ..., "created_at": ..., "last_activity_at": ...},
          "relationships": {"activities": {"data": [ ... ]}}
        }
        """
        report_id = str(data.get("id") or "")
        attrs = data.get("attributes")
        if not isinstance(attrs, dict):
            attrs = {}

        activities: list[Activity] = []
        relationships = data.get("relationships")
        if isinstance(relationships, dict):
            rel = relationships.get("activities")
            items = rel.get("data") if isinstance(rel, dict) else None
            if isinstance(items, list):
                activities = [
                    Activity.from_resource(it, report_id=report_id) for it in items if isinstance(it, dict)
                ]

        return cls(
            id=report_id,
            title=_opt_str(attrs.get("title")),
            state=_opt_str(attrs.get("state")),
            created_at=_opt_datetime(attrs.get("created_at")),
            last_activity_at=_opt_datetime(attrs.get("last_activity_at")),
            activities=tuple(activities),
            raw=data,
        )


@dataclass(frozen=True, slots=True)
class ReportListFilter:
    """
    报告列表过滤条件（对齐 API 的 filter[...] 参数）。

    program 为必填范围；时间字段为 None 时不下发。
    轮询引擎只会覆盖 last_activity_at_gt，其余字段原样透传。
    """

    program: tuple[str, ...] = ()
    state: tuple[str, ...] = ()
    id: tuple[int, ...] = ()
    created_at_gt: datetime | None = None
    created_at_lt: datetime | None = None
    triaged_at_gt: datetime | None = None
    triaged_at_lt: datetime | None = None
    triaged_at_null: bool = False
    closed_at_gt: datetime | None = None
    closed_at_lt: datetime | None = None
    closed_at_null: bool = False
    disclosed_at_gt: datetime | None = None
    disclosed_at_lt: datetime | None = None
    disclosed_at_null: bool = False
    last_activity_at_gt: datetime | None = None
    last_activity_at_lt: datetime | None = None

    def to_query_params(self) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        for name in ("program", "state", "id"):
            for v in getattr(self, name):
                params.append((f"filter[{name}][]", str(v)))

        for name in (
            "created_at",
            "triaged_at",
            "closed_at",
            "disclosed_at",
            "last_activity_at",
        ):
            for op in ("gt", "lt"):
                v = getattr(self, f"{name}_{op}")
                if v is not None:
                    params.append((f"filter[{name}__{op}]", format_rfc3339_datetime(v)))
            null_attr = f"{name}_null"
            if getattr(self, null_attr, False):
                params.append((f"filter[{name}__null]", "true"))
        return params


@dataclass(frozen=True, slots=True)
class ReportPage:
    """
    列表接口的一页结果；next_page 为 None 表示没有更多页。
    """

    reports: tuple[Report, ...]
    next_page: int | None = None
