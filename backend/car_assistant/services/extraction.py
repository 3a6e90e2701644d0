from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from .fields import ExtractionResult, FieldKey, RawMatch
from .formatter import format_value
from .numerals import resolve, to_arabic_numerals

LOGGER = logging.getLogger(__name__)


_STOP = r"，。,；;！？!?\n"
# lazy gap that never leaves the current clause
_GAP = rf"[^{_STOP}]*?"
_LEAD = rf"(?:^|(?<=[{_STOP}\s]))"

_PRICE = r"(?:车价|车辆价格|车款|总价|价格|预算|价位|想买个|想买)"
_DOWN = r"(?:首付款|首付比例|首付)"
_MONTHLY = r"(?:月供|每个月|每月|月还|还款)"
_OTHER_THAN_PRICE = ("首付", "月供", "每月", "每个月", "月还")
_OTHER_THAN_MONTHLY = ("首付", "预算", "车价", "价格")


def _clause_free_of(markers: Sequence[str]) -> str:
    return rf"(?:(?!{'|'.join(markers)})[^{_STOP}])*?"


FIELD_PATTERNS: Dict[FieldKey, List[re.Pattern[str]]] = {
    FieldKey.CAR_PRICE: [
        re.compile(_PRICE + _GAP + r"(?<![\d.])(\d+)万(\d)(?!\d)(?:千|k|K)?"),
        re.compile(
            _LEAD
            + _clause_free_of(_OTHER_THAN_PRICE)
            + r"(?<![\d.])(\d+)万(\d)(?!\d)(?:千|k|K)?"
            + _GAP
            + r"(?:的车|左右|预算|价位|差不多)"
        ),
        re.compile(_PRICE + _GAP + r"(?<![\d.])(\d+(?:\.\d+)?)\s*(万元|万|w|W)(?!\d)"),
        re.compile(
            _LEAD
            + _clause_free_of(_OTHER_THAN_PRICE)
            + r"(?<![\d.])(\d+(?:\.\d+)?)\s*(万元|万|w|W)(?!\d)"
            + _GAP
            + r"(?:的车|左右|预算|价位)"
        ),
        re.compile(_PRICE + _GAP + r"(?<![\d.])(\d{4,7})\s*(元|块)?(?![\d.万千])"),
    ],
    FieldKey.DOWN_PAYMENT: [
        re.compile(_DOWN + _GAP + r"(?<![\d.])(\d+)万(\d)(?!\d)(?:千|k|K)?"),
        re.compile(_DOWN + _GAP + r"(?<![\d.])(\d+(?:\.\d+)?)\s*(万元|万|w|W|%|成|千|k|K)(?!\d)"),
        re.compile(_DOWN + _GAP + r"(?<![\d.])(\d+(?:\.\d+)?)(?![\d.])"),
    ],
    FieldKey.MONTHLY_PAYMENT: [
        re.compile(_MONTHLY + _GAP + r"(?<![\d.])(\d+)千(\d)(?!\d)(?:百|元|块)?"),
        re.compile(_MONTHLY + _GAP + r"(?<![\d.])(\d+(?:\.\d+)?)\s*(千|k|K|元|块)"),
        re.compile(
            r"(?:月供|每月还款|月还款)" + _GAP + r"(?:不超过|大概|大约|在|是|控制)" + _GAP + r"(?<!\d)(\d{3,5})(?!\d)"
        ),
        re.compile(
            _LEAD
            + _clause_free_of(_OTHER_THAN_MONTHLY)
            + r"(?<![\d.])(\d{3,5})(?![\d.万千%])"
            + _GAP
            + r"(?:的月供|一个月|每月|月供|还款)"
        ),
        re.compile(_MONTHLY + _GAP + r"(?<![\d.])(\d{3,6})(?![\d.万千%])"),
    ],
    FieldKey.LOAN_TERM: [
        re.compile(r"(?:贷款|分期|按揭|分)" + _GAP + r"(?<![\d.])(\d+)\s*(个月|年|期|月)"),
        re.compile(rf"(?:选做|选择|做|选|办)[^{_STOP}]{{0,5}}?(?<![\d.])(\d+)\s*(个月|年|期|月)"),
        re.compile(rf"(?<![\d.])(\d+)\s*(个月|年|期|月)[^{_STOP}]{{0,5}}(?:分期|贷款|按揭)"),
        re.compile(r"(?:贷|还)" + _GAP + r"(?<![\d.])(\d+)\s*(年|期)"),
    ],
}


class LocalRuleExtractor:
    """Deterministic pattern cascade over the transcript.

    Each field walks its own pattern list in priority order and stops at the first
    hit; a field whose numbers do not normalize resolves to ``None`` without touching
    the others.
    """

    def __init__(self, patterns: Optional[Dict[FieldKey, List[re.Pattern[str]]]] = None) -> None:
        self._patterns = patterns or FIELD_PATTERNS

    def extract_matches(self, text: str) -> Dict[FieldKey, RawMatch]:
        source = to_arabic_numerals(text)
        matches: Dict[FieldKey, RawMatch] = {}
        for field in FieldKey:
            for regex in self._patterns.get(field, []):
                match = regex.search(source)
                if not match:
                    continue
                value, unit = resolve(field, match.groups(), source)
                matches[field] = RawMatch(field=field, numeric_value=value, unit=unit, raw_span=match.group(0))
                break
        return matches

    def extract(self, text: str) -> ExtractionResult:
        values: Dict[FieldKey, Optional[str]] = {}
        for field, raw in self.extract_matches(text).items():
            values[field] = format_value(field, raw.numeric_value, raw.unit)
            if values[field] is None:
                LOGGER.debug("Discarded non-numeric %s capture: %r", field.value, raw.raw_span)
        return ExtractionResult.from_mapping(values)


extractor = LocalRuleExtractor()


__all__ = ["FIELD_PATTERNS", "LocalRuleExtractor", "extractor"]
