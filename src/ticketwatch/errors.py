from __future__ import annotations

from typing import Any, Mapping, Sequence


class TicketWatchError(Exception):
    """所有 ticketwatch 自定义异常的基类。"""


class ApiError(TicketWatchError):
    """
    API 返回非 2xx 响应。

    errors 为 JSON:API 的 errors 数组（若响应体可解析），便于调用方记录具体原因。
    """

    def __init__(self, status: int, url: str, errors: Sequence[Mapping[str, Any]] = ()) -> None:
        self.status = status
        self.url = url
        self.errors = tuple(errors)
        super().__init__(self._describe())

    def _describe(self) -> str:
        details = "; ".join(
            str(e.get("detail") or e.get("title") or e) for e in self.errors if isinstance(e, Mapping)
        )
        msg = f"GET {self.url}: {self.status}"
        return f"{msg} {details}" if details else msg


class PollError(TicketWatchError):
    """
    轮询过程中的失败，通过 error channel 交给消费者。

    stage:
      - "list"：分页列表失败，本轮中止
      - "detail"：单个报告详情失败，跳过该报告
    原始异常通过 __cause__ 保留。
    """

    def __init__(self, stage: str, message: str, *, report_id: str | None = None, page: int | None = None) -> None:
        self.stage = stage
        self.report_id = report_id
        self.page = page
        super().__init__(message)
