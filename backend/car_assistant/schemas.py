from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from .services.fields import ExtractionResult


class FieldValues(BaseModel):
    carPrice: Optional[str] = None
    downPayment: Optional[str] = None
    monthlyPayment: Optional[str] = None
    loanTerm: Optional[str] = None

    @classmethod
    def from_result(cls, result: ExtractionResult) -> "FieldValues":
        return cls(**result.as_dict())


class ExtractRequest(BaseModel):
    text: str = Field(min_length=1)


class ExtractResponse(BaseModel):
    local: FieldValues
    remote: Optional[FieldValues] = None
    merged: FieldValues
    source: str = Field(pattern="^(local|remote)$")
    remote_error: Optional[str] = None


class CredentialUpdate(BaseModel):
    api_key: Optional[str] = None


class CredentialStatus(BaseModel):
    configured: bool
