from __future__ import annotations

import logging

from fastapi import APIRouter

from ..schemas import CredentialStatus, CredentialUpdate, ExtractRequest, ExtractResponse, FieldValues
from ..services.extraction import extractor
from ..services.remote import RemoteExtractionError, RemoteNotConfiguredError, remote_extractor

LOGGER = logging.getLogger(__name__)
router = APIRouter()


@router.post("/extract", response_model=ExtractResponse)
async def extract_fields(payload: ExtractRequest) -> ExtractResponse:
    local = extractor.extract(payload.text)
    merged = local
    remote_values: FieldValues | None = None
    remote_error: str | None = None
    try:
        remote = await remote_extractor.extract(payload.text)
    except RemoteNotConfiguredError:
        pass
    except RemoteExtractionError as exc:
        LOGGER.warning("Remote extraction failed, answering with local result: %s", exc)
        remote_error = str(exc)
    else:
        remote_values = FieldValues.from_result(remote)
        merged = local.overlay(remote)
    return ExtractResponse(
        local=FieldValues.from_result(local),
        remote=remote_values,
        merged=FieldValues.from_result(merged),
        source="remote" if remote_values is not None else "local",
        remote_error=remote_error,
    )


@router.get("/credential", response_model=CredentialStatus)
async def get_credential() -> CredentialStatus:
    return CredentialStatus(configured=remote_extractor.configured)


@router.put("/credential", response_model=CredentialStatus)
async def set_credential(payload: CredentialUpdate) -> CredentialStatus:
    remote_extractor.api_key = payload.api_key
    LOGGER.info("Remote credential %s", "updated" if remote_extractor.configured else "cleared")
    return CredentialStatus(configured=remote_extractor.configured)
