from __future__ import annotations

from .errors import PollError
from .models import Activity, Report


def _one_line(value: str | None, limit: int = 200) -> str:
    if not value:
        return "-"
    text = " ".join(value.split())
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text


def format_report_text(report: Report) -> str:
    return f"New Report [{report.id}]: {_one_line(report.title)}"


def format_activity_text(activity: Activity) -> str:
    """
    单行活动通知：report / activity / type，内部活动额外标注。
    """
    report_id = activity.report_id or "-"
    visibility = " (internal)" if activity.internal else ""
    return f"New Activity [{report_id}/{activity.id}/{activity.type or '-'}]{visibility}: {_one_line(activity.message)}"


def format_error_text(error: PollError) -> str:
    cause = error.__cause__
    cause_s = f" ({type(cause).__name__})" if cause is not None else ""
    return f"Poll Error [{error.stage}]{cause_s}: {error}"
