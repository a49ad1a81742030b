from __future__ import annotations

import urllib.parse
from dataclasses import dataclass
from typing import Any, Mapping

from ..http_utils import HttpClient, basic_auth_header, query_param, with_query_params
from ..models import Report, ReportListFilter, ReportPage

DEFAULT_BASE_URL = "https://api.hackerone.com/v1/"


def _next_page_number(links: Any) -> int | None:
    if not isinstance(links, dict):
        return None
    next_url = links.get("next")
    if not isinstance(next_url, str) or not next_url:
        return None
    value = query_param(next_url, "page[number]")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


@dataclass(slots=True)
class ApiClient:
    """
    报告 API 客户端（JSON:API）。

    认证：HTTP Basic，用户名为 API identifier，密码为 API token。
    base_url 需以 / 结尾，资源路径按相对路径拼接。
    """

    http: HttpClient
    identifier: str
    token: str
    base_url: str = DEFAULT_BASE_URL
    page_size: int | None = None

    def _headers(self) -> Mapping[str, str]:
        return {
            "Accept": "application/json",
            "Authorization": basic_auth_header(self.identifier, self.token),
        }

    def _url(self, path: str) -> str:
        return urllib.parse.urljoin(self.base_url, path)

    def list_reports(self, filter: ReportListFilter, page: int | None = None) -> ReportPage:
        params = filter.to_query_params()
        if page is not None:
            params.append(("page[number]", str(page)))
        if self.page_size:
            params.append(("page[size]", str(self.page_size)))
        url = with_query_params(self._url("reports"), params)

        resp = self.http.get(url, headers=self._headers())
        payload = resp.json()
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            raise ValueError(f"reports API expected object with data list: {resp.url}")

        reports = tuple(Report.from_resource(it) for it in payload["data"] if isinstance(it, dict))
        return ReportPage(reports=reports, next_page=_next_page_number(payload.get("links")))

    def get_report(self, report_id: str) -> Report:
        url = self._url(f"reports/{urllib.parse.quote(report_id, safe='')}")
        resp = self.http.get(url, headers=self._headers())
        payload = resp.json()
        # 详情接口可能直接返回 resource，也可能包一层 data
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not isinstance(payload, dict):
            raise ValueError(f"report API expected object, got {type(payload)}: {resp.url}")
        return Report.from_resource(payload)
