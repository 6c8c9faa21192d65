from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import pytest
import requests

SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

TUSHARE_FIELDS = [
    "ts_code",
    "name",
    "ipo_date",
    "issue_date",
    "amount",
    "market",
    "price",
    "pe",
    "limit_amount",
    "funds",
    "ballot",
]

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<body>
    <span class="update-time">更新时间：2024/1/1 08:00:00</span>
    <script>
        const mockIpoData = [
            {
                "name": "旧数据",
                "code": "600000",
                "date": "2024-01-01",
                "requiredMarketValue": {"shanghai": 10, "shenzhen": 20}
            }
        ];
        render(mockIpoData);
    </script>
</body>
</html>
"""


class DummyResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, text: str | None = None) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload, ensure_ascii=False)
        self.headers = {"content-type": "application/json"}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


@dataclass
class RecordingSession:
    responses: List[Any] = field(default_factory=list)
    calls: List[Dict[str, Any]] = field(default_factory=list)
    closed: bool = False

    def post(self, url: str, json: Any = None, headers: Any = None, timeout: Any = None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


def tushare_payload(items: List[List[Any]]) -> Dict[str, Any]:
    return {
        "request_id": "test",
        "code": 0,
        "msg": "",
        "data": {"fields": list(TUSHARE_FIELDS), "items": items, "has_more": False},
    }


RESOLVED_ITEM = [
    "688981.SH",
    "芯片科技",
    "20240115",
    "20240125",
    2500.0,
    "科创板",
    18.5,
    32.1,
    1.5,
    12.5,
    0.04,
]

UNDATED_ITEM = [
    "301999.SZ",
    "待定股份",
    None,
    None,
    1200.0,
    "创业板",
    None,
    None,
    0.8,
    None,
    None,
]


@pytest.fixture
def page_path(tmp_path: Path) -> Path:
    path = tmp_path / "index.html"
    path.write_text(PAGE_TEMPLATE, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "TUSHARE_TOKEN",
        "PUSHPLUS_TOKEN",
        "PUSHPLUS_TOPIC",
        "IPO_PAGE_PATH",
        "IPO_BACKUP_DIR",
        "IPO_SITE_URL",
        "IPO_CONFIG_PATH",
        "IPO_OVERRIDE_DATE",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("IPO_RUN_ID", "test-run")
