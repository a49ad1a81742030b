from __future__ import annotations

import base64
import json
import random
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .errors import ApiError


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _api_error(e: urllib.error.HTTPError, url: str) -> ApiError:
    errors: list[Mapping[str, Any]] = []
    try:
        data = json.loads(e.read().decode("utf-8"))
        if isinstance(data, dict) and isinstance(data.get("errors"), list):
            errors = [x for x in data["errors"] if isinstance(x, dict)]
    except Exception:  # noqa: BLE001
        errors = []
    return ApiError(status=e.code, url=url, errors=errors)


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库），供 API client 调用。

    策略：
    - 对 429/5xx 与网络错误做有限次退避重试
    - 统一超时、User-Agent
    - 最终的非 2xx 响应转换为 ApiError（带 JSON:API errors）
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "ticketwatch/0",
        max_retries: int = 3,
        base_backoff_seconds: float = 0.8,
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._max_retries = max_retries
        self._base_backoff_seconds = base_backoff_seconds
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(dict(headers))

        last_error: Exception | None = None
        for attempt in range(self._max_retries + 1):
            try:
                req = urllib.request.Request(url=url, headers=request_headers, method="GET")
                with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
                    resp_headers = {k: v for k, v in resp.headers.items()}
                    return HttpResponse(
                        status=getattr(resp, "status", 200),
                        url=resp.geturl(),
                        headers=resp_headers,
                        body=resp.read(),
                    )
            except urllib.error.HTTPError as e:
                last_error = e
                retry = e.code in (429, 500, 502, 503, 504)
                if (not retry) or attempt >= self._max_retries:
                    raise _api_error(e, url) from e
            except (urllib.error.URLError, TimeoutError) as e:
                last_error = e
                if attempt >= self._max_retries:
                    raise

            backoff = self._base_backoff_seconds * (2**attempt)
            jitter = random.random() * 0.25 * backoff
            time.sleep(backoff + jitter)

        assert last_error is not None
        raise last_error


def with_query_params(url: str, params: Iterable[tuple[str, str]] | Mapping[str, str]) -> str:
    """
    追加查询参数；支持重复 key（filter[program][]=a&filter[program][]=b）。
    """
    items = list(params.items()) if isinstance(params, Mapping) else list(params)
    parsed = urllib.parse.urlparse(url)
    q = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    override = {k for k, _ in items}
    q = [(k, v) for k, v in q if k not in override]
    q.extend((k, v) for k, v in items if v is not None)
    new_query = urllib.parse.urlencode(q)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def query_param(url: str, name: str) -> str | None:
    parsed = urllib.parse.urlparse(url)
    values = urllib.parse.parse_qs(parsed.query).get(name)
    if not values:
        return None
    return values[0]
