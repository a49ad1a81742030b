from __future__ import annotations

import logging

from .api.client import ApiClient
from .config import AppConfig
from .http_utils import HttpClient
from .polling.cache import DedupCache
from .polling.channels import PollChannels
from .polling.engine import PollEngine
from .polling.scheduler import Poller
from .state.memory_store import MemoryReportState
from .state.sqlite_store import SqliteReportState
from .state.store import ReportStateStore


logger = logging.getLogger(__name__)


def build_state(config: AppConfig) -> ReportStateStore:
    if config.state.sqlite_path:
        return SqliteReportState(config.state.sqlite_path)
    return MemoryReportState()


def build_client(config: AppConfig, *, http: HttpClient | None = None) -> ApiClient:
    identifier = config.resolve_env(config.api.identifier_env)
    token = config.resolve_env(config.api.token_env)
    if not identifier or not token:
        raise ValueError(
            f"API credentials missing: set env {config.api.identifier_env} and {config.api.token_env}"
        )
    http = http or HttpClient(
        timeout_seconds=config.api.timeout_seconds,
        max_retries=config.api.max_retries,
    )
    return ApiClient(
        http=http,
        identifier=identifier,
        token=token,
        base_url=config.api.base_url,
        page_size=config.api.page_size,
    )


def build_poller(
    config: AppConfig,
    *,
    client=None,  # noqa: ANN001
) -> Poller:
    """
    根据配置装配 Poller（client / 状态表 / 去重缓存 / 通道 / 引擎 / 调度器）。

    - 对 secret/token 只通过环境变量读取，避免落盘
    - client 可注入（测试或自定义传输层）
    """
    if config.window_seconds < 2 * config.poll_interval_seconds:
        logger.warning(
            "window shorter than 2x poll interval; activities may be missed: window_seconds=%d poll_interval_seconds=%d",
            config.window_seconds,
            config.poll_interval_seconds,
        )

    if client is None:
        client = build_client(config)

    engine = PollEngine(
        client=client,
        filter=config.filter,
        window=config.window,
        state=build_state(config),
        cache=DedupCache(capacity=config.dedup.capacity, ttl_seconds=config.dedup_ttl_seconds()),
        channels=PollChannels(config.channel_capacity),
        prune_state=config.state.prune,
    )
    return Poller(engine, interval_seconds=config.poll_interval_seconds)
