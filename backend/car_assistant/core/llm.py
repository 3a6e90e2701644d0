from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from typing import Any, Dict, Optional

import aiohttp

from ..config import settings

LOGGER = logging.getLogger(__name__)


class LLMNotConfiguredError(RuntimeError):
    """Raised when no DashScope credential is available."""


class LLMTransportError(RuntimeError):
    """Raised when the DashScope call fails or returns a non-success status."""


async def generate(
    messages: Iterable[Dict[str, Any]],
    *,
    api_key: str | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    timeout: float | None = None,
    extra_headers: Optional[Dict[str, str]] = None,
) -> str:
    """Run one chat-style completion against the DashScope generation endpoint.

    Parameters
    ----------
    messages:
        Chat messages, sent as ``input.messages``.
    api_key:
        Bearer credential. Falls back to ``DASHSCOPE_API_KEY``.
    model:
        Optional override for the model identifier.
    max_tokens:
        Upper bound on generated tokens.
    temperature:
        Sampling temperature.
    timeout:
        Total request budget in seconds; expiry is reported as a transport error.
    extra_headers:
        Extra HTTP headers to merge into the request.

    Returns
    -------
    str
        ``output.choices[0].message.content`` of the response.
    """

    key = api_key if api_key is not None else settings.dashscope_api_key
    if not key:
        raise LLMNotConfiguredError("DashScope credential is not configured")

    payload: Dict[str, Any] = {
        "model": model or settings.dashscope_model_id,
        "input": {"messages": list(messages)},
        "parameters": {
            "result_format": "message",
            "max_tokens": max_tokens if max_tokens is not None else settings.remote_max_tokens,
            "temperature": temperature if temperature is not None else settings.remote_temperature,
        },
    }
    headers = {
        "Authorization": f"Bearer {key}",
        "Content-Type": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)

    client_timeout = aiohttp.ClientTimeout(
        total=timeout if timeout is not None else settings.remote_timeout_seconds
    )
    try:
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.post(settings.dashscope_base_url, headers=headers, json=payload) as response:
                if response.status >= 400:
                    detail = await _error_detail(response)
                    raise LLMTransportError(f"DashScope request failed ({response.status}): {detail}")
                data = await response.json(content_type=None)
    except asyncio.TimeoutError as exc:
        raise LLMTransportError("DashScope request timed out") from exc
    except aiohttp.ClientError as exc:
        raise LLMTransportError(f"DashScope request failed: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise LLMTransportError("DashScope returned a non-JSON body") from exc

    try:
        content = data["output"]["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        LOGGER.debug("Unexpected DashScope envelope: %s", data)
        raise LLMTransportError("DashScope returned an unexpected envelope") from exc
    return _content_text(content)


def _content_text(content: Any) -> str:
    """Multimodal models answer with a list of ``{"text": ...}`` parts."""

    if content is None:
        return ""
    if isinstance(content, list):
        return "".join(
            str(part.get("text") or "") if isinstance(part, dict) else str(part) for part in content
        )
    return content if isinstance(content, str) else str(content)


async def _error_detail(response: Any) -> str:
    """Prefer the body's ``message`` field, fall back to the raw text."""

    try:
        body = await response.json(content_type=None)
    except (json.JSONDecodeError, aiohttp.ContentTypeError, ValueError):
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    try:
        text = await response.text()
    except (aiohttp.ClientError, UnicodeDecodeError):
        return "API请求失败"
    return text.strip() or "API请求失败"


__all__ = ["generate", "LLMNotConfiguredError", "LLMTransportError"]
