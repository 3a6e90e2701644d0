from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from ..config import settings
from ..core import llm
from .fields import ExtractionResult, FieldKey

LOGGER = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "你是一个专业的购车需求分析助手，擅长从用户对话中提取车辆价格、首付、月供、贷款期限等关键信息。"
    "特别注意：\"2万5\"应该解析为2.5万元，不是25。"
)

PROMPT_TEMPLATE = """任务：从用户购车对话中提取关键信息，以JSON格式返回。

提取规则：
1. carPrice（车辆价格）：提取用户提到的车辆预算或价格
   - 必须包含单位"万"或"元"
   - 口语表达转换："15万左右"→"15万元"，"20万出头"→"20万元"
   - "2万5" 或 "2万五" 应该解析为 "2.5万元"
2. downPayment（首付款）：提取首付金额或比例
   - 如果是金额：必须包含"万"或"元"单位
   - 口语转换："2万5"→"2.5万元"，"3万"→"3万元"，"百分之三十"→"30%"，"三成"→"30%"
3. monthlyPayment（月供金额）：提取每月还款能力
   - 必须包含"元"单位
   - 口语转换："三千"→"3000元"，"三千五"→"3500元"
4. loanTerm（贷款期限）：提取分期时长
   - 统一转换为"X年"或"X个月"
   - 口语转换："三年"→"3年"，"36期"→"3年"

严格规则：
- "2万5" 必须输出 "2.5万元"，"3万8" 必须输出 "3.8万元"，只输出"25"是错误的
- 数值和单位必须完整，不能只返回数字
- 如果没有找到某项信息，该字段返回null

用户内容："{text}"

输出格式（严格JSON，不要markdown代码块）：
{{"carPrice": "提取的价格或null", "downPayment": "提取的首付或null", "monthlyPayment": "提取的月供或null", "loanTerm": "提取的期限或null"}}

示例1：
输入："我想买15万的车，首付2万5，月供3000左右"
输出：{{"carPrice": "15万元", "downPayment": "2.5万元", "monthlyPayment": "3000元", "loanTerm": null}}

示例2：
输入："预算20万，首付30%，分三年还"
输出：{{"carPrice": "20万元", "downPayment": "30%", "monthlyPayment": null, "loanTerm": "3年"}}

示例3：
输入："首付2万五左右"
输出：{{"carPrice": null, "downPayment": "2.5万元", "monthlyPayment": null, "loanTerm": null}}"""

FIELD_SYNONYMS: Dict[FieldKey, tuple[str, ...]] = {
    FieldKey.CAR_PRICE: ("carPrice", "车辆价格", "price"),
    FieldKey.DOWN_PAYMENT: ("downPayment", "首付款", "downpayment"),
    FieldKey.MONTHLY_PAYMENT: ("monthlyPayment", "月供", "monthly"),
    FieldKey.LOAN_TERM: ("loanTerm", "贷款期限", "term"),
}

FALLBACK_PATTERNS: Dict[FieldKey, re.Pattern[str]] = {
    FieldKey.CAR_PRICE: re.compile(r"(?:车价|车辆价格|价格|price)[\"'：:\s]*([^\"'\n,，}]+)", re.IGNORECASE),
    FieldKey.DOWN_PAYMENT: re.compile(r"(?:首付款|首付|down\s*payment|down)[\"'：:\s]*([^\"'\n,，}]+)", re.IGNORECASE),
    FieldKey.MONTHLY_PAYMENT: re.compile(r"(?:月供|monthly\s*payment|monthly)[\"'：:\s]*([^\"'\n,，}]+)", re.IGNORECASE),
    FieldKey.LOAN_TERM: re.compile(r"(?:贷款期限|期限|term)[\"'：:\s]*([^\"'\n,，}]+)", re.IGNORECASE),
}

_NULL_LITERALS = {"", "null", "none", "无", "未提及"}


class RemoteExtractionError(RuntimeError):
    """Raised when remote extraction produced no usable answer."""


class RemoteNotConfiguredError(RemoteExtractionError):
    """Raised before any network call when no credential is set."""


class RemoteTransportError(RemoteExtractionError):
    """Raised when the model service errors or answers with a failure status."""


class RemoteParseError(RemoteExtractionError):
    """Raised when neither the JSON nor the label fallback yields anything."""


def build_prompt(text: str) -> str:
    return PROMPT_TEMPLATE.format(text=text)


def build_messages(text: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_prompt(text)},
    ]


class RemoteExtractor:
    """Field extraction through the DashScope chat model."""

    def __init__(self, api_key: str | None = None, *, model: str | None = None, timeout: float | None = None) -> None:
        self._api_key = api_key if api_key is not None else settings.dashscope_api_key
        self.model = model
        self.timeout = timeout

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @api_key.setter
    def api_key(self, value: str | None) -> None:
        self._api_key = (value or "").strip() or None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def extract(self, text: str) -> ExtractionResult:
        if not self.configured:
            raise RemoteNotConfiguredError("请先配置千问API Key")
        LOGGER.info("Requesting remote extraction for %d chars", len(text))
        try:
            content = await llm.generate(
                build_messages(text),
                api_key=self._api_key,
                model=self.model,
                timeout=self.timeout,
            )
        except llm.LLMNotConfiguredError as exc:
            raise RemoteNotConfiguredError(str(exc)) from exc
        except llm.LLMTransportError as exc:
            raise RemoteTransportError(str(exc)) from exc
        LOGGER.debug("Remote raw content: %s", content)
        return parse_response(content)


def parse_response(content: str) -> ExtractionResult:
    """Parse model output into the four fields.

    The first JSON object in ``content`` wins; when there is none the labels are
    scanned one by one. Raises :class:`RemoteParseError` when both come up empty.
    """

    if not isinstance(content, str):
        content = "" if content is None else str(content)
    payload = _first_json_object(content)
    if payload is not None:
        return ExtractionResult.from_mapping({field: _pick(payload, field) for field in FieldKey})
    LOGGER.warning("Remote content is not JSON, scanning labels instead")
    result = fallback_parse(content)
    if result.is_empty():
        raise RemoteParseError("Remote response contained no recognizable fields")
    return result


def fallback_parse(content: str) -> ExtractionResult:
    values: Dict[FieldKey, Optional[str]] = {}
    for field, regex in FALLBACK_PATTERNS.items():
        match = regex.search(content or "")
        values[field] = _clean(match.group(1)) if match else None
    return ExtractionResult.from_mapping(values)


def _pick(payload: Dict[str, Any], field: FieldKey) -> Optional[str]:
    for key in FIELD_SYNONYMS[field]:
        value = _clean(payload.get(key))
        if value is not None:
            return value
    return None


def _clean(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip().strip("\"'").strip()
    if text.lower() in _NULL_LITERALS:
        return None
    return text


def _first_json_object(raw: str) -> Optional[Dict[str, Any]]:
    cleaned = _strip_code_fence((raw or "").strip())
    decoder = json.JSONDecoder()
    idx = cleaned.find("{")
    while idx != -1:
        try:
            value, _ = decoder.raw_decode(cleaned, idx)
        except json.JSONDecodeError:
            idx = cleaned.find("{", idx + 1)
            continue
        if isinstance(value, dict):
            return value
        idx = cleaned.find("{", idx + 1)
    return None


def _strip_code_fence(payload: str) -> str:
    if not payload.startswith("```"):
        return payload
    lines = payload.splitlines()
    if len(lines) < 2:
        return payload
    if lines[-1].strip().startswith("```"):
        content = lines[1:-1]
    else:
        content = lines[1:]
    return "\n".join(content).strip()


remote_extractor = RemoteExtractor()


__all__ = [
    "RemoteExtractor",
    "RemoteExtractionError",
    "RemoteNotConfiguredError",
    "RemoteTransportError",
    "RemoteParseError",
    "build_prompt",
    "build_messages",
    "parse_response",
    "fallback_parse",
    "remote_extractor",
]
