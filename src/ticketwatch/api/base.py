from __future__ import annotations

from typing import Protocol

from ..models import Report, ReportListFilter, ReportPage


class ReportClient(Protocol):
    """
    轮询引擎依赖的 API 接口（只读两项能力）：
    - 按过滤条件分页列出报告（page 为 None 表示第一页）
    - 拉取单个报告的完整详情（含活动历史）

    约定：失败时抛异常，由引擎统一捕获并投递到 error channel。
    """

    def list_reports(self, filter: ReportListFilter, page: int | None = None) -> ReportPage: ...

    def get_report(self, report_id: str) -> Report: ...
