#!/usr/bin/env python3
"""Fetch upcoming A-share offerings from Tushare Pro.

The provider is called once per run over a rolling 30-day window. Any
provider or transport failure degrades to an empty record list so the page
still refreshes; a missing token is the only fatal condition.
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import requests

from ipo_tracker.common.dates import PENDING, compact_to_display, now_local, to_compact
from ipo_tracker.common.logging import log, setup_logger
from ipo_tracker.common.market import UNKNOWN, classify_market, strip_suffix
from ipo_tracker.common.quota import estimate_required_market_value
from ipo_tracker.config import load_settings

TUSHARE_URL = "http://api.tushare.pro"
TUSHARE_API_NAME = "new_share"
TUSHARE_FIELDS = (
    "ts_code,name,ipo_date,issue_date,amount,market,price,pe,limit_amount,funds,ballot"
)
REQUEST_TIMEOUT = 15
WINDOW_DAYS = 30
USER_AGENT = "Mozilla/5.0 (compatible; ipo-tracker/0.1)"
SOURCE_NAME = "tushare_new_share"
DEFAULT_RECORDS_PATH = Path("out") / "ipo_records.json"

# limit_amount is reported in units of 10,000 shares
LIMIT_AMOUNT_UNIT = 10000

Number = Union[int, float]


@dataclass
class OfferingRecord:
    name: str
    code: str
    date: str
    market: str
    price: Optional[float]
    maxSubscription: int
    requiredMarketValue: Dict[str, int] = field(default_factory=dict)
    industry: str = PENDING
    peRatio: Union[float, str] = PENDING
    expectedFundraise: str = PENDING
    listingDate: str = PENDING

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "code": self.code,
            "date": self.date,
            "market": self.market,
            "price": self.price,
            "maxSubscription": self.maxSubscription,
            "requiredMarketValue": dict(self.requiredMarketValue),
            "industry": self.industry,
            "peRatio": self.peRatio,
            "expectedFundraise": self.expectedFundraise,
            "listingDate": self.listingDate,
        }


def _positive_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def _trim_number(value: Number) -> str:
    rounded = round(float(value), 4)
    if rounded.is_integer():
        return str(int(rounded))
    return str(rounded)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def zip_items(fields: Sequence[str], items: Sequence[Any]) -> List[Dict[str, Any]]:
    """Rebuild field -> value mappings from Tushare's positional rows.

    Rows that are already mappings pass through unchanged; anything else is
    skipped. Short rows leave the trailing fields absent.
    """

    rows: List[Dict[str, Any]] = []
    for item in items:
        if isinstance(item, Mapping):
            rows.append(dict(item))
        elif isinstance(item, (list, tuple)):
            rows.append({name: value for name, value in zip(fields, item)})
    return rows


def transform_item(raw: Mapping[str, Any]) -> OfferingRecord:
    ts_code = _text(raw.get("ts_code"))
    market = classify_market(ts_code)
    if market == UNKNOWN:
        market = _text(raw.get("market")) or UNKNOWN

    limit_amount = _positive_float(raw.get("limit_amount"))
    max_subscription = int(round(limit_amount * LIMIT_AMOUNT_UNIT)) if limit_amount else 0

    price = _positive_float(raw.get("price"))
    pe = _positive_float(raw.get("pe"))
    funds = _positive_float(raw.get("funds"))

    return OfferingRecord(
        name=_text(raw.get("name")) or UNKNOWN,
        code=strip_suffix(ts_code),
        date=compact_to_display(_text(raw.get("ipo_date"))),
        market=market,
        price=price,
        maxSubscription=max_subscription,
        requiredMarketValue=estimate_required_market_value(max_subscription),
        industry=_text(raw.get("industry")) or PENDING,
        peRatio=pe if pe is not None else PENDING,
        expectedFundraise=f"{_trim_number(funds)}亿" if funds is not None else PENDING,
        listingDate=compact_to_display(_text(raw.get("issue_date"))),
    )


def transform_payload(payload: Any) -> List[Dict[str, Any]]:
    """Normalize a Tushare response body, dropping undated offerings."""

    if not isinstance(payload, Mapping):
        raise ValueError("响应不是 JSON 对象")
    code = payload.get("code", 0)
    if code not in (0, None):
        raise ValueError(f"Tushare 返回错误 code={code} msg={payload.get('msg', '')}")
    data = payload.get("data")
    if data is None:
        return []
    if not isinstance(data, Mapping):
        raise ValueError("data 字段格式异常")
    items = data.get("items") or []
    fields = data.get("fields") or []
    if not isinstance(items, list) or not isinstance(fields, list):
        raise ValueError("data.items / data.fields 格式异常")

    records: List[Dict[str, Any]] = []
    for index, row in enumerate(zip_items(fields, items)):
        try:
            record = transform_item(row)
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"第 {index} 条记录无法解析: {exc}") from exc
        if record.date == PENDING:
            continue
        records.append(record.to_mapping())
    return records


def build_request(token: str, now: datetime, window_days: int = WINDOW_DAYS) -> Dict[str, Any]:
    return {
        "api_name": TUSHARE_API_NAME,
        "token": token,
        "params": {
            "start_date": to_compact(now),
            "end_date": to_compact(now + timedelta(days=window_days)),
        },
        "fields": TUSHARE_FIELDS,
    }


def _request_json(session: requests.Session, body: Dict[str, Any]) -> Any:
    try:
        resp = session.post(
            TUSHARE_URL,
            json=body,
            headers={"User-Agent": USER_AGENT},
            timeout=REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise RuntimeError(f"HTTP 请求失败: {exc}") from exc
    try:
        resp.raise_for_status()
    except requests.HTTPError as exc:
        snippet = resp.text[:200] if getattr(resp, "text", None) else str(exc)
        raise RuntimeError(f"HTTP 状态错误: {resp.status_code} {snippet}") from exc
    try:
        return resp.json()
    except ValueError as exc:
        raise RuntimeError("响应解析失败（JSON）") from exc


def fetch_ipo_records(
    token: str,
    now: datetime,
    *,
    session: Optional[requests.Session] = None,
    window_days: int = WINDOW_DAYS,
    logger: Optional[logging.Logger] = None,
) -> List[Dict[str, Any]]:
    """Return normalized offering records for ``[now, now + window_days]``.

    Errors from the provider are logged and produce an empty list.
    """

    logger = logger or setup_logger("etl")
    body = build_request(token, now, window_days)
    params = body["params"]
    log(logger, logging.INFO, "ipo_fetch_start", **params)

    own_session = session or requests.Session()
    try:
        payload = _request_json(own_session, body)
        records = transform_payload(payload)
    except (RuntimeError, ValueError) as exc:
        log(logger, logging.WARNING, "ipo_fetch_failed", source=SOURCE_NAME, detail=str(exc))
        return []
    finally:
        if session is None:
            own_session.close()

    raw_count = 0
    data = payload.get("data") if isinstance(payload, Mapping) else None
    if isinstance(data, Mapping) and isinstance(data.get("items"), list):
        raw_count = len(data["items"])
    log(
        logger,
        logging.INFO,
        "ipo_fetch_complete",
        source=SOURCE_NAME,
        raw_items=raw_count,
        records=len(records),
        dropped_undated=raw_count - len(records),
    )
    return records


def run(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch upcoming IPO records from Tushare")
    parser.add_argument(
        "--out",
        default=str(DEFAULT_RECORDS_PATH),
        help="写出 JSON 文件路径（默认 out/ipo_records.json）",
    )
    parser.add_argument(
        "--window-days", type=int, default=WINDOW_DAYS, help="向后查询的天数（默认 30）"
    )
    args = parser.parse_args(argv)

    logger = setup_logger("etl")
    settings = load_settings(logger)
    token = settings.require_tushare_token()

    records = fetch_ipo_records(token, now_local(), window_days=args.window_days, logger=logger)
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(records, f, ensure_ascii=False, indent=2)
    log(logger, logging.INFO, "ipo_records_written", path=str(out_path), records=len(records))
    return 0


if __name__ == "__main__":
    sys.exit(run())
