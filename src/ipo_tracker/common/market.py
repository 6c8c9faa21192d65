"""Map Tushare security codes to A-share market segments."""
from __future__ import annotations

from typing import Optional, Tuple

UNKNOWN = "未知"

STAR_MARKET = "科创板"
SH_MAIN_BOARD = "沪市主板"
CHINEXT = "创业板"
SZ_MAIN_BOARD = "深市主板"
BEIJING = "北交所"
SHANGHAI = "沪市"
SHENZHEN = "深市"

# (exchange suffix, leading digits, label); first match wins. A ``None``
# suffix only matches bare codes, an empty prefix matches any code.
_RULES: Tuple[Tuple[Optional[str], Tuple[str, ...], str], ...] = (
    ("SH", ("688", "689"), STAR_MARKET),
    ("SH", ("600", "601", "603", "605"), SH_MAIN_BOARD),
    ("SZ", ("300", "301"), CHINEXT),
    ("SZ", ("000", "001", "002", "003"), SZ_MAIN_BOARD),
    ("BJ", ("",), BEIJING),
    (None, ("920", "8", "4"), BEIJING),
    ("SH", ("",), SHANGHAI),
    ("SZ", ("",), SHENZHEN),
)


def _split(ts_code: object) -> Tuple[str, Optional[str]]:
    if not isinstance(ts_code, str):
        return "", None
    text = ts_code.strip()
    if "." not in text:
        return text, None
    digits, _, suffix = text.partition(".")
    return digits.strip(), suffix.strip().upper() or None


def strip_suffix(ts_code: object) -> str:
    """Return the code without its exchange suffix, or :data:`UNKNOWN`."""

    digits, _ = _split(ts_code)
    return digits or UNKNOWN


def classify_market(ts_code: object) -> str:
    digits, suffix = _split(ts_code)
    if not digits:
        return UNKNOWN
    for rule_suffix, prefixes, label in _RULES:
        if rule_suffix != suffix:
            continue
        if any(digits.startswith(prefix) for prefix in prefixes):
            return label
    return UNKNOWN
