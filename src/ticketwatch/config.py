from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from .api.client import DEFAULT_BASE_URL
from .models import ReportListFilter, parse_rfc3339_datetime


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 20
DEFAULT_WINDOW_SECONDS = 60
DEFAULT_DEDUP_CAPACITY = 100_000


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_bool(d: Mapping[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    return bool(v)


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except Exception:
        return default


def _get_opt_float(d: Mapping[str, Any], key: str) -> float | None:
    v = d.get(key)
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except Exception:
        return None


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


def _get_str_list(d: Mapping[str, Any], key: str, default: list[str]) -> list[str]:
    v = d.get(key, default)
    if v is None:
        return list(default)
    if isinstance(v, list):
        return [str(x) for x in v]
    if isinstance(v, str):
        return [v]
    return list(default)


_TIME_FILTER_FIELDS = (
    "created_at",
    "triaged_at",
    "closed_at",
    "disclosed_at",
    "last_activity_at",
)


def _parse_filter(d: Mapping[str, Any]) -> ReportListFilter:
    """
    filter 段与 API 的 filter[...] 参数一一对应：

    {"program": ["acme"], "state": ["new"], "created_at__gt": "2016-01-01T00:00:00Z", "closed_at__null": true}

    last_activity_at__gt 由轮询引擎按窗口覆盖，这里配置了也不会生效。
    """
    kwargs: dict[str, Any] = {
        "program": tuple(_get_str_list(d, "program", [])),
        "state": tuple(_get_str_list(d, "state", [])),
    }
    ids: list[int] = []
    for raw_id in _get_str_list(d, "id", []):
        try:
            ids.append(int(raw_id))
        except ValueError as e:
            raise ValueError(f"Expected integer report id at $.filter.id, got {raw_id!r}") from e
    kwargs["id"] = tuple(ids)

    for name in _TIME_FILTER_FIELDS:
        for op in ("gt", "lt"):
            value = _get_str(d, f"{name}__{op}")
            if value:
                kwargs[f"{name}_{op}"] = parse_rfc3339_datetime(value)
        if name != "created_at" and name != "last_activity_at":
            kwargs[f"{name}_null"] = _get_bool(d, f"{name}__null", False)

    if d.get("last_activity_at__gt"):
        logger.warning("filter.last_activity_at__gt is overridden by the poll window and will be ignored")
    return ReportListFilter(**kwargs)


@dataclass(frozen=True, slots=True)
class ApiConfig:
    """
    API 连接配置。

    identifier_env / token_env:
      - API identifier 与 token 所在的环境变量名（密钥不落配置文件）
    page_size:
      - 列表接口每页条数；None 表示使用服务端默认值
    """

    base_url: str
    identifier_env: str
    token_env: str
    page_size: int | None = None
    timeout_seconds: float = 20.0
    max_retries: int = 3


@dataclass(frozen=True, slots=True)
class DedupConfig:
    capacity: int = DEFAULT_DEDUP_CAPACITY
    ttl_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class StateConfig:
    """
    sqlite_path:
      - 为空则使用进程内状态表；配置后报告状态持久化到 SQLite，重启后不会把旧报告当作新报告
    prune:
      - 每轮结束后删除 last_activity 早于本轮 cutoff 的条目（为空的保留），限制状态表规模
    """

    sqlite_path: str | None = None
    prune: bool = False


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    poll_interval_seconds:
      - 轮询间隔
    window_seconds:
      - 回看窗口，建议不小于 2 倍轮询间隔（不强制）
    channel_capacity:
      - 事件通道待取槽位数；默认 1，消费者不取走则 worker 阻塞
    """

    api: ApiConfig
    filter: ReportListFilter
    poll_interval_seconds: int
    window_seconds: int
    dedup: DedupConfig
    channel_capacity: int | None
    state: StateConfig

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.poll_interval_seconds)

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self.window_seconds)

    def dedup_ttl_seconds(self) -> float:
        """未显式配置时取 interval + window：足以覆盖相邻两轮重叠的回看窗口。"""
        if self.dedup.ttl_seconds is not None:
            return self.dedup.ttl_seconds
        return float(self.poll_interval_seconds + self.window_seconds)

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)


def parse_config(raw: Any) -> AppConfig:
    root = _require_dict(raw, where="$")

    api = _require_dict(root.get("api", {}), where="$.api")
    page_size = _get_int(api, "page_size", 0)
    api_cfg = ApiConfig(
        base_url=str(api.get("base_url") or DEFAULT_BASE_URL),
        identifier_env=str(api.get("identifier_env") or "TICKETWATCH_API_IDENTIFIER"),
        token_env=str(api.get("token_env") or "TICKETWATCH_API_TOKEN"),
        page_size=page_size if page_size > 0 else None,
        timeout_seconds=_get_opt_float(api, "timeout_seconds") or 20.0,
        max_retries=max(0, _get_int(api, "max_retries", 3)),
    )

    filter_cfg = _parse_filter(_require_dict(root.get("filter", {}), where="$.filter"))

    poll_interval_seconds = _get_int(root, "poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)
    if poll_interval_seconds <= 0:
        raise ValueError(f"poll_interval_seconds must be positive, got {poll_interval_seconds}")
    window_seconds = _get_int(root, "window_seconds", DEFAULT_WINDOW_SECONDS)
    if window_seconds <= 0:
        raise ValueError(f"window_seconds must be positive, got {window_seconds}")

    dedup = _require_dict(root.get("dedup", {}), where="$.dedup")
    dedup_cfg = DedupConfig(
        capacity=_get_int(dedup, "capacity", DEFAULT_DEDUP_CAPACITY),
        ttl_seconds=_get_opt_float(dedup, "ttl_seconds"),
    )
    if dedup_cfg.capacity <= 0:
        raise ValueError(f"dedup.capacity must be positive, got {dedup_cfg.capacity}")
    if dedup_cfg.ttl_seconds is not None and dedup_cfg.ttl_seconds <= 0:
        raise ValueError(f"dedup.ttl_seconds must be positive or null, got {dedup_cfg.ttl_seconds}")

    channel_capacity: int | None = 1
    if "channel_capacity" in root:
        channel_capacity = None if root["channel_capacity"] is None else _get_int(root, "channel_capacity", 1)
        if channel_capacity is not None and channel_capacity <= 0:
            raise ValueError(f"channel_capacity must be positive or null, got {channel_capacity}")

    state = _require_dict(root.get("state", {}), where="$.state")
    state_cfg = StateConfig(
        sqlite_path=_get_str(state, "sqlite_path", None) or None,
        prune=_get_bool(state, "prune", False),
    )

    return AppConfig(
        api=api_cfg,
        filter=filter_cfg,
        poll_interval_seconds=poll_interval_seconds,
        window_seconds=window_seconds,
        dedup=dedup_cfg,
        channel_capacity=channel_capacity,
        state=state_cfg,
    )


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式，避免引入第三方 YAML 解析依赖。

    JSON 顶层结构（示意）：
    {
      "api": {"base_url": "https://api.hackerone.com/v1/", "identifier_env": "...", "token_env": "..."},
      "filter": {"program": ["acme"]},
      "poll_interval_seconds": 20,
      "window_seconds": 60,
      "dedup": {"capacity": 100000, "ttl_seconds": null},
      "channel_capacity": 1,
      "state": {"sqlite_path": null, "prune": false}
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))
    return parse_config(raw)
