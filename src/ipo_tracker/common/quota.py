"""Rough market-value thresholds for subscription quota.

The Shanghai exchange grants one subscription unit (1,000 shares) per
10,000 CNY of held market value, Shenzhen one unit (500 shares) per
10,000 CNY. The figures produced here are estimates for display only; real
eligibility must be checked with the broker or exchange.
"""
from __future__ import annotations

import math
from typing import Dict

DEFAULT_MAX_SUBSCRIPTION = 10000
SHANGHAI_SHARES_PER_UNIT = 1000
SHENZHEN_SHARES_PER_UNIT = 500


def _coerce_quantity(value: object) -> float:
    if isinstance(value, bool):
        return float(DEFAULT_MAX_SUBSCRIPTION)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return float(DEFAULT_MAX_SUBSCRIPTION)
    if math.isnan(number) or math.isinf(number) or number <= 0:
        return float(DEFAULT_MAX_SUBSCRIPTION)
    return number


def estimate_required_market_value(max_subscription: object) -> Dict[str, int]:
    """Estimate the market value (in 10,000 CNY) needed for a full quota.

    Absent, non-numeric or non-positive quantities fall back to
    :data:`DEFAULT_MAX_SUBSCRIPTION`. Each threshold is at least 1.
    """

    quantity = _coerce_quantity(max_subscription)
    return {
        "shanghai": max(1, math.ceil(quantity / SHANGHAI_SHARES_PER_UNIT)),
        "shenzhen": max(1, math.ceil(quantity / SHENZHEN_SHARES_PER_UNIT)),
    }
