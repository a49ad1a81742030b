from .base import ReportClient
from .client import DEFAULT_BASE_URL, ApiClient

__all__ = [
    "ApiClient",
    "DEFAULT_BASE_URL",
    "ReportClient",
]
