from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional, Tuple


class FieldKey(str, Enum):
    CAR_PRICE = "carPrice"
    DOWN_PAYMENT = "downPayment"
    MONTHLY_PAYMENT = "monthlyPayment"
    LOAN_TERM = "loanTerm"


_ATTRS = {
    FieldKey.CAR_PRICE: "car_price",
    FieldKey.DOWN_PAYMENT: "down_payment",
    FieldKey.MONTHLY_PAYMENT: "monthly_payment",
    FieldKey.LOAN_TERM: "loan_term",
}


@dataclass(frozen=True)
class RawMatch:
    """A pattern hit before formatting."""

    field: FieldKey
    numeric_value: float
    unit: str
    raw_span: str


@dataclass(frozen=True)
class ExtractionResult:
    """One display value (or ``None``) for each of the four fields."""

    car_price: Optional[str] = None
    down_payment: Optional[str] = None
    monthly_payment: Optional[str] = None
    loan_term: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[FieldKey, Optional[str]]) -> "ExtractionResult":
        return cls(**{_ATTRS[key]: values.get(key) for key in FieldKey})

    def get(self, key: FieldKey) -> Optional[str]:
        return getattr(self, _ATTRS[FieldKey(key)])

    def items(self) -> Iterator[Tuple[FieldKey, Optional[str]]]:
        for key in FieldKey:
            yield key, self.get(key)

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def overlay(self, other: "ExtractionResult") -> "ExtractionResult":
        """Return a copy where every non-null value of ``other`` wins."""
        updates = {_ATTRS[key]: value for key, value in other.items() if value is not None}
        return replace(self, **updates)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {key.value: value for key, value in self.items()}


@dataclass(frozen=True)
class AnalysisRequest:
    text: str
    request_id: int


@dataclass(frozen=True)
class TranscriptEvent:
    """Incremental text from the speech engine; only final text is analyzed."""

    text: str
    is_final: bool = True


__all__ = ["FieldKey", "RawMatch", "ExtractionResult", "AnalysisRequest", "TranscriptEvent"]
