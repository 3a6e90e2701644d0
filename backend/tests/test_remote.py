from __future__ import annotations

import asyncio
from typing import Any, Iterable, List

import pytest

from car_assistant.core import llm
from car_assistant.services import remote
from car_assistant.services.fields import ExtractionResult
from car_assistant.services.remote import (
    RemoteExtractor,
    RemoteNotConfiguredError,
    RemoteParseError,
    RemoteTransportError,
    build_messages,
    build_prompt,
    parse_response,
)


class DummyResponse:
    def __init__(self, *, status: int = 200, body: Any = None, text: str = "") -> None:
        self.status = status
        self._body = body
        self._text = text

    async def json(self, content_type: str | None = None) -> Any:
        return self._body

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> "DummyResponse":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class TimeoutResponse:
    async def __aenter__(self) -> "TimeoutResponse":
        raise asyncio.TimeoutError()

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class DummySession:
    def __init__(self, responses: Iterable[Any]) -> None:
        self._responses: List[Any] = list(responses)
        self.calls: list[dict] = []

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    def post(self, url: str, **kwargs) -> Any:
        self.calls.append({"url": url, **kwargs})
        return self._responses.pop(0)


def _envelope(content: Any) -> dict:
    return {"output": {"choices": [{"message": {"role": "assistant", "content": content}}]}}


def test_prompt_carries_text_and_compound_examples() -> None:
    prompt = build_prompt("首付2万5")

    assert '用户内容："首付2万5"' in prompt
    assert '"2万5" 必须输出 "2.5万元"' in prompt
    assert '{"carPrice": "15万元", "downPayment": "2.5万元"' in prompt

    messages = build_messages("首付2万5")
    assert [m["role"] for m in messages] == ["system", "user"]


def test_parse_response_reads_json() -> None:
    content = '{"carPrice": "15万元", "downPayment": "2.5万元", "monthlyPayment": "3000元", "loanTerm": null}'

    assert parse_response(content) == ExtractionResult(
        car_price="15万元", down_payment="2.5万元", monthly_payment="3000元"
    )


def test_parse_response_accepts_synonym_keys_and_surrounding_prose() -> None:
    content = '结果如下：{"车辆价格": "20万元", "首付款": "30%", "月供": null, "贷款期限": "3年"} 以上。'

    result = parse_response(content)

    assert result.car_price == "20万元"
    assert result.down_payment == "30%"
    assert result.monthly_payment is None
    assert result.loan_term == "3年"


def test_parse_response_strips_code_fence() -> None:
    content = '```json\n{"carPrice": "15万元", "loanTerm": "null"}\n```'

    result = parse_response(content)

    assert result.car_price == "15万元"
    assert result.loan_term is None


def test_all_null_json_is_a_valid_answer() -> None:
    content = '{"carPrice": null, "downPayment": null, "monthlyPayment": null, "loanTerm": null}'

    assert parse_response(content).is_empty()


def test_parse_response_falls_back_to_labels() -> None:
    content = "carPrice: 15万元\ndownPayment: 2.5万元\nmonthlyPayment: null\nloanTerm: 3年"

    result = parse_response(content)

    assert result.as_dict() == {
        "carPrice": "15万元",
        "downPayment": "2.5万元",
        "monthlyPayment": None,
        "loanTerm": "3年",
    }


def test_parse_response_without_fields_raises() -> None:
    with pytest.raises(RemoteParseError):
        parse_response("抱歉，我无法理解。")


@pytest.mark.asyncio
async def test_extract_without_key_never_calls_service(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fail_generate(*args, **kwargs):
        raise AssertionError("network must not be touched")

    monkeypatch.setattr(llm, "generate", fail_generate)

    with pytest.raises(RemoteNotConfiguredError):
        await RemoteExtractor(api_key="").extract("我想买15万的车")


def test_api_key_setter_strips_blank_values() -> None:
    extractor = RemoteExtractor(api_key="")
    assert not extractor.configured

    extractor.api_key = "  sk-test  "
    assert extractor.api_key == "sk-test"
    assert extractor.configured

    extractor.api_key = "   "
    assert extractor.api_key is None
    assert not extractor.configured


@pytest.mark.asyncio
async def test_extract_sends_prompt_and_parses_answer(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict = {}

    async def fake_generate(messages, **kwargs):
        seen["messages"] = list(messages)
        seen.update(kwargs)
        return '{"carPrice": "15万元", "downPayment": "2.5万元", "monthlyPayment": "3000元", "loanTerm": null}'

    monkeypatch.setattr(llm, "generate", fake_generate)

    result = await RemoteExtractor(api_key="sk-test").extract("我想买15万的车，首付2万5，月供3000左右")

    assert result.down_payment == "2.5万元"
    assert seen["api_key"] == "sk-test"
    assert seen["messages"][0]["content"] == remote.SYSTEM_PROMPT
    assert "我想买15万的车，首付2万5，月供3000左右" in seen["messages"][1]["content"]


@pytest.mark.asyncio
async def test_generate_posts_dashscope_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    session = DummySession([DummyResponse(body=_envelope('{"carPrice": "15万元"}'))])
    monkeypatch.setattr(llm.aiohttp, "ClientSession", lambda **_: session)

    content = await llm.generate(
        [{"role": "user", "content": "hi"}], api_key="sk-test", max_tokens=500, temperature=0.1
    )

    assert content == '{"carPrice": "15万元"}'
    call = session.calls[0]
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["json"]["input"] == {"messages": [{"role": "user", "content": "hi"}]}
    assert call["json"]["parameters"] == {"result_format": "message", "max_tokens": 500, "temperature": 0.1}


@pytest.mark.asyncio
async def test_generate_without_key_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm.settings, "dashscope_api_key", None)

    with pytest.raises(llm.LLMNotConfiguredError):
        await llm.generate([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_http_error_surfaces_service_message(monkeypatch: pytest.MonkeyPatch) -> None:
    failing = DummyResponse(status=401, body={"code": "InvalidApiKey", "message": "Invalid API-key provided."})
    monkeypatch.setattr(llm.aiohttp, "ClientSession", lambda **_: DummySession([failing]))

    with pytest.raises(RemoteTransportError, match="Invalid API-key provided."):
        await RemoteExtractor(api_key="sk-bad").extract("我想买15万的车")


@pytest.mark.asyncio
async def test_http_error_without_body_uses_generic_message(monkeypatch: pytest.MonkeyPatch) -> None:
    failing = DummyResponse(status=500, body=None, text="")
    monkeypatch.setattr(llm.aiohttp, "ClientSession", lambda **_: DummySession([failing]))

    with pytest.raises(llm.LLMTransportError, match="API请求失败"):
        await llm.generate([{"role": "user", "content": "hi"}], api_key="sk-test")


@pytest.mark.asyncio
async def test_timeout_is_a_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm.aiohttp, "ClientSession", lambda **_: DummySession([TimeoutResponse()]))

    with pytest.raises(RemoteTransportError, match="timed out"):
        await RemoteExtractor(api_key="sk-test").extract("我想买15万的车")


@pytest.mark.asyncio
async def test_unexpected_envelope_is_a_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm.aiohttp, "ClientSession", lambda **_: DummySession([DummyResponse(body={"output": {}})]))

    with pytest.raises(RemoteTransportError, match="unexpected envelope"):
        await RemoteExtractor(api_key="sk-test").extract("我想买15万的车")


@pytest.mark.asyncio
async def test_list_content_is_joined_into_text(monkeypatch: pytest.MonkeyPatch) -> None:
    parts = [{"text": '{"carPrice": "15万元", '}, {"text": '"loanTerm": "3年"}'}]
    session = DummySession([DummyResponse(body=_envelope(parts))])
    monkeypatch.setattr(llm.aiohttp, "ClientSession", lambda **_: session)

    result = await RemoteExtractor(api_key="sk-test").extract("我想买15万的车，分三年")

    assert result.car_price == "15万元"
    assert result.loan_term == "3年"


def test_parse_response_tolerates_non_string_content() -> None:
    with pytest.raises(RemoteParseError):
        parse_response(None)  # type: ignore[arg-type]
    with pytest.raises(RemoteParseError):
        parse_response(42)  # type: ignore[arg-type]
