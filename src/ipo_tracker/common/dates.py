"""Conversions between Tushare compact dates and display dates."""
from __future__ import annotations

import os
from datetime import date, datetime
from typing import Optional

from zoneinfo import ZoneInfo

CHINA_TZ = ZoneInfo("Asia/Shanghai")
PENDING = "待定"


def to_compact(moment: date) -> str:
    """Format *moment* as ``YYYYMMDD`` using its own calendar fields."""

    return f"{moment.year:04d}{moment.month:02d}{moment.day:02d}"


def compact_to_display(compact: Optional[str]) -> str:
    """Re-slice ``YYYYMMDD`` into ``YYYY-MM-DD``.

    Empty or absent input yields :data:`PENDING`. The digits are not checked
    against the calendar.
    """

    if not compact:
        return PENDING
    text = str(compact)
    return f"{text[0:4]}-{text[4:6]}-{text[6:8]}"


def now_local() -> datetime:
    override = os.getenv("IPO_OVERRIDE_DATE")
    current = datetime.now(CHINA_TZ)
    if override:
        day = datetime.strptime(override, "%Y-%m-%d")
        return current.replace(year=day.year, month=day.month, day=day.day)
    return current


def format_timestamp(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S")
