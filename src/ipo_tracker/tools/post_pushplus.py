#!/usr/bin/env python3
"""Send the IPO summary to a PushPlus topic."""
from __future__ import annotations

import argparse
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests
from jinja2 import Environment, PackageLoader

from ipo_tracker.common.dates import PENDING, format_timestamp, now_local
from ipo_tracker.common.logging import log, setup_logger
from ipo_tracker.config import load_settings

PUSHPLUS_URL = "http://www.pushplus.plus/send"
REQUEST_TIMEOUT = 15
TEMPLATE_NAME = "pushplus.md.j2"
DEFAULT_RECORDS_PATH = Path("out") / "ipo_records.json"


def _price_label(value: Any) -> str:
    if value is None or value == "" or value == 0:
        return PENDING
    return f"{value}元"


def _build_env() -> Environment:
    env = Environment(loader=PackageLoader("ipo_tracker.tools", "templates"))
    env.filters["price_label"] = _price_label
    return env


def _sort_key(item: Mapping[str, Any]) -> str:
    return str(item.get("date", ""))


def build_title(records: Sequence[Mapping[str, Any]]) -> str:
    return f"【打新提醒】发现 {len(records)} 只新股申购"


def build_content(
    records: Sequence[Mapping[str, Any]], now: datetime, site_url: str
) -> str:
    """Render the markdown body, rows ascending by subscription date."""

    ordered = sorted(records, key=_sort_key)
    template = _build_env().get_template(TEMPLATE_NAME)
    return template.render(
        records=ordered,
        today=now.strftime("%Y-%m-%d"),
        updated_at=format_timestamp(now),
        site_url=site_url,
    )


def _build_payload(
    records: Sequence[Mapping[str, Any]],
    *,
    token: str,
    topic: str,
    now: datetime,
    site_url: str,
) -> Dict[str, Any]:
    return {
        "token": token,
        "title": build_title(records),
        "content": build_content(records, now, site_url),
        "template": "markdown",
        "topic": topic,
    }


def send_notification(
    records: Sequence[Mapping[str, Any]],
    *,
    token: Optional[str],
    topic: str,
    now: datetime,
    site_url: str,
    session: Optional[requests.Session] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Post the summary once. Returns ``True`` only when PushPlus accepted it.

    A missing token or an empty record list skips the call. Transport and
    service errors are logged and never raised.
    """

    logger = logger or setup_logger("pushplus")
    if not token:
        log(logger, logging.INFO, "pushplus_skip_missing_token")
        return False
    if not records:
        log(logger, logging.INFO, "pushplus_skip_no_records")
        return False

    payload = _build_payload(records, token=token, topic=topic, now=now, site_url=site_url)
    log(logger, logging.INFO, "pushplus_send", topic=topic, records=len(records))

    poster = session if session is not None else requests
    try:
        resp = poster.post(PUSHPLUS_URL, json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        log(logger, logging.ERROR, "pushplus_request_failed", error=str(exc))
        return False

    if resp.status_code != 200:
        log(
            logger,
            logging.ERROR,
            "pushplus_http_error",
            status_code=resp.status_code,
            response=resp.text[:500],
        )
        return False

    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict) or body.get("code") != 200:
        log(logger, logging.ERROR, "pushplus_business_error", response=body)
        return False

    log(logger, logging.INFO, "pushplus_push_completed", topic=topic, records=len(records))
    return True


def _load_records(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        raise FileNotFoundError(f"缺少输入文件: {path}")
    with path.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        # backup snapshots wrap the records as {"updateTime", "data"}
        payload = payload.get("data", [])
    if not isinstance(payload, list):
        raise ValueError(f"记录文件格式异常: {path}")
    return [item for item in payload if isinstance(item, dict)]


def run(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Push IPO summary to PushPlus")
    parser.add_argument(
        "--records",
        default=str(DEFAULT_RECORDS_PATH),
        help="新股记录 JSON（默认 out/ipo_records.json，也接受备份快照）",
    )
    parser.add_argument("--topic", help="PushPlus 群组编码（覆盖 PUSHPLUS_TOPIC）")
    args = parser.parse_args(argv)

    logger = setup_logger("pushplus")
    settings = load_settings(logger)
    records = _load_records(Path(args.records))

    send_notification(
        records,
        token=settings.pushplus_token,
        topic=args.topic or settings.pushplus_topic,
        now=now_local(),
        site_url=settings.site_url,
        logger=logger,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
