"""
ticketwatch

报告跟踪 API 的轻量客户端，加上一层增量轮询与去重引擎：
按固定间隔列出窗口内有变化的报告，拉取详情，
对新报告与新活动做恰好一次的通知（error / reports / activities 三个通道）。
"""

from .models import Activity, Report, ReportListFilter, ReportPage

__all__ = [
    "Activity",
    "Report",
    "ReportListFilter",
    "ReportPage",
]
