from __future__ import annotations

import math
import re
from typing import Optional, Tuple

from .fields import FieldKey


WAN_UNITS = frozenset({"万", "万元", "w", "W"})
QIAN_UNITS = frozenset({"千", "千元", "k", "K"})
YUAN_UNITS = frozenset({"元", "块", ""})
MONTH_UNITS = frozenset({"月", "个月"})

_DISPLAY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(万元|千元|元|%|年|个月|期)\s*$")


def render_number(value: float) -> str:
    """``15.0`` renders as ``15``, ``2.5`` stays ``2.5``."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _to_wan(value: float) -> str:
    return f"{value / 10000:.1f}万元"


def format_value(field: FieldKey, value: float, unit: str | None) -> Optional[str]:
    """Render a normalized number as the canonical display string for ``field``."""

    if value is None or math.isnan(value):
        return None
    unit = (unit or "").strip()
    num = render_number(value)

    if field is FieldKey.CAR_PRICE:
        if unit in WAN_UNITS:
            return f"{num}万元"
        return _to_wan(value) if value >= 10000 else f"{num}元"

    if field is FieldKey.DOWN_PAYMENT:
        if "成" in unit:
            return f"{render_number(value * 10)}%"
        if unit == "%":
            return f"{num}%"
        if unit in QIAN_UNITS:
            return f"{num}千元"
        if unit in WAN_UNITS:
            return f"{num}万元"
        return f"{num}元"

    if field is FieldKey.MONTHLY_PAYMENT:
        if unit in QIAN_UNITS:
            return f"{num}千元"
        if unit in YUAN_UNITS:
            return f"{math.floor(value + 0.5)}元"
        if unit in WAN_UNITS:
            return f"{num}万元"
        return f"{num}元" if value < 10000 else _to_wan(value)

    if field is FieldKey.LOAN_TERM:
        if unit == "年":
            return f"{num}年" if value <= 10 else f"{math.floor(value / 12)}年"
        if unit in MONTH_UNITS:
            return f"{math.floor(value / 12)}年" if value >= 12 else f"{num}个月"
        if unit == "期":
            years = math.floor(value / 12)
            return f"{years}年" if years > 0 else f"{num}个月"
        return f"{num}期"

    raise ValueError(f"unknown field {field!r}")


def parse_display(display: str) -> Tuple[float, str]:
    """Split a display string such as ``2.5万元`` back into ``(2.5, "万元")``."""

    match = _DISPLAY_RE.match(display or "")
    if not match:
        return math.nan, ""
    return float(match.group(1)), match.group(2)


__all__ = ["format_value", "parse_display", "render_number", "WAN_UNITS", "QIAN_UNITS"]
