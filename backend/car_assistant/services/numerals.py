from __future__ import annotations

import math
import re
from typing import Optional, Sequence, Tuple

from .fields import FieldKey


_CN_DIGITS = {
    "零": 0,
    "〇": 0,
    "一": 1,
    "二": 2,
    "两": 2,
    "三": 3,
    "四": 4,
    "五": 5,
    "六": 6,
    "七": 7,
    "八": 8,
    "九": 9,
}
_D = "零〇一二两三四五六七八九"
_UNIT_AHEAD = r"(?=\d|[万千百年期月成元块%]|个月)"

_PERCENT_RE = re.compile(rf"百分之([{_D}十\d]+(?:[点.][{_D}\d]+)?)")
_DECIMAL_RE = re.compile(rf"[{_D}\d]+点[{_D}\d]+(?=[万千元块%年]|个月)")
_TENS_RE = re.compile(
    rf"[一二两三四五六七八九]{{0,2}}十[一二三四五六七八九]{{0,2}}(?=[万千年期月成元块%]|个月|[^\u4e00-\u9fff]|$)"
)
_RUN_RE = re.compile(rf"[{_D}]+{_UNIT_AHEAD}")
_TRAILING_RE = re.compile(rf"(?<=\d[万千])[{_D}](?=[千百元块左上]|[^\u4e00-\u9fff]|$)")

_ONE_DIGIT = re.compile(r"[0-9]")
_COMPOUND_SPAN = re.compile(r"(\d+)([万千])([0-9])(?![0-9])")
_PLAIN_SPAN = re.compile(r"(\d+(?:\.\d+)?)\s*([^\d\s]*)")

_WAN_FIELDS = (FieldKey.CAR_PRICE, FieldKey.DOWN_PAYMENT)


def to_arabic_numerals(text: str) -> str:
    """Rewrite spoken Chinese numerals that sit in a numeric context.

    ``百分之三十`` becomes ``30%``, ``三十六期`` becomes ``36期``, ``三千五`` becomes
    ``3千5`` and ``2万五`` becomes ``2万5``. Numerals that are not next to a unit are
    left alone, and so is the ``一个月`` idiom ("per month").
    """

    if not text:
        return ""
    text = _PERCENT_RE.sub(_replace_percent, text)
    text = _DECIMAL_RE.sub(_replace_spelled, text)
    text = _TENS_RE.sub(_replace_spelled, text)
    text = _RUN_RE.sub(_replace_run, text)
    return _TRAILING_RE.sub(lambda m: _digits(m.group(0)), text)


def resolve(field: FieldKey, groups: Sequence[str | None], source: str) -> Tuple[float, str]:
    """Turn regex capture groups into ``(value, unit)``.

    A single-digit second group is a colloquial compound: ``X万Y`` means ``X.Y万`` for
    prices and down payments, ``X千Y`` means ``X*1000 + Y*100`` yuan for monthly
    payments. The compound reading only applies when the literal ``X万Y``/``X千Y`` is
    present in ``source``. Non-numeric captures come back as ``nan``.
    """

    major = groups[0] if groups else None
    minor = groups[1] if len(groups) > 1 else None
    if minor is not None and _ONE_DIGIT.fullmatch(minor):
        if field in _WAN_FIELDS and f"{major}万{minor}" in source:
            return _to_float(major) + int(minor) / 10, "万"
        if field is FieldKey.MONTHLY_PAYMENT and f"{major}千{minor}" in source:
            return _to_float(major) * 1000 + int(minor) * 100, "元"
        return _to_float(major), ""
    return _to_float(major), minor or ""


def normalize(span: str, field: FieldKey) -> Tuple[float, str]:
    """Normalize a short numeric span such as ``2万5`` or ``3千8`` for ``field``."""

    text = to_arabic_numerals(span)
    match = _COMPOUND_SPAN.search(text)
    if match:
        major, _, minor = match.groups()
        return resolve(field, (major, minor), text)
    match = _PLAIN_SPAN.search(text)
    if match:
        return resolve(field, match.groups(), text)
    return math.nan, ""


def _to_float(raw: str | None) -> float:
    try:
        return float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return math.nan


def _replace_run(match: re.Match[str]) -> str:
    run = match.group(0)
    if run == "一" and match.string.startswith("个月", match.end()):
        return run
    return _digits(run)


def _digits(token: str) -> str:
    return "".join(str(_CN_DIGITS[char]) if char in _CN_DIGITS else char for char in token)


def _replace_percent(match: re.Match[str]) -> str:
    value = _spell(match.group(1))
    return match.group(0) if value is None else f"{value}%"


def _replace_spelled(match: re.Match[str]) -> str:
    value = _spell(match.group(0))
    return match.group(0) if value is None else value


def _digit_value(part: str, default: int) -> Optional[int]:
    """One digit, or a spoken range of two adjacent digits (``二三``) read as its low end."""
    if not part:
        return default
    values = [int(char) for char in _digits(part)] if _digits(part).isdecimal() else []
    if len(values) == 1:
        return values[0]
    if len(values) == 2 and values[1] == values[0] + 1:
        return values[0]
    return None


def _spell(token: str) -> Optional[str]:
    """Spell out a numeral such as ``三十六`` or ``二点五``; ``None`` when malformed.

    Ranges keep their lower bound: ``二三十`` is 20 and ``十五六`` is 15.
    """
    if "点" in token or "." in token:
        whole, _, frac = token.replace("点", ".").partition(".")
        whole_value = _spell(whole) if whole else "0"
        frac_value = _digits(frac)
        if whole_value is None or not frac_value.isdecimal():
            return None
        return f"{whole_value}.{frac_value}"
    if "十" in token:
        if token.count("十") != 1:
            return None
        tens, _, ones = token.partition("十")
        tens_value = _digit_value(tens, 1)
        ones_value = _digit_value(ones, 0)
        if tens_value is None or ones_value is None:
            return None
        return str(tens_value * 10 + ones_value)
    value = _digits(token)
    return value if value.isdecimal() else None


__all__ = ["to_arabic_numerals", "resolve", "normalize"]
