from .memory_store import MemoryReportState
from .sqlite_store import SqliteReportState
from .store import ReportStateStore

__all__ = [
    "MemoryReportState",
    "ReportStateStore",
    "SqliteReportState",
]
