from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import pytest

from copytune.core.config import DispatchConfig
from copytune.core.dispatcher import ProviderDispatcher
from copytune.core.errors import (
    ConfigurationError,
    ProviderError,
    ResponseParseError,
    UnsupportedProviderError,
)
from copytune.core.models import Category, ChatTurn, Provider, SavedModelConfig
from copytune.core.ports import HttpResponse
from copytune.core.providers import WIRE_FORMATS, describe_http_error


class FakeTransport:
    def __init__(self, responses: Optional[list[HttpResponse]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    async def post_json(self, url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float) -> HttpResponse:
        self.calls.append({"url": url, "headers": headers, "payload": payload, "timeout": timeout})
        return self.responses.pop(0)


def _ok(body: dict[str, Any]) -> HttpResponse:
    return HttpResponse(200, json.dumps(body, ensure_ascii=False))


def _model(provider: Provider, **kwargs: Any) -> SavedModelConfig:
    defaults = {"model": "m-1", "api_key": "sk-test"}
    defaults.update(kwargs)
    return SavedModelConfig(provider=provider, **defaults)


def test_every_provider_has_a_wire_format() -> None:
    assert set(WIRE_FORMATS) == set(Provider)


def test_unknown_provider_tag_is_rejected() -> None:
    with pytest.raises(UnsupportedProviderError):
        Provider.parse("mistral")
    assert Provider.parse(" Claude ") == Provider.CLAUDE


def test_openai_request_and_trimmed_reply() -> None:
    transport = FakeTransport([_ok({"choices": [{"message": {"content": "  立即提交 \n"}}]})])
    dispatcher = ProviderDispatcher(transport, DispatchConfig(timeout_seconds=5))

    result = asyncio.run(dispatcher.rewrite(_model(Provider.OPENAI), "sys", "user"))

    assert result == "立即提交"
    call = transport.calls[0]
    assert call["url"] == "https://api.openai.com/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["payload"]["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "user"},
    ]
    assert call["payload"]["temperature"] == 0.7
    assert call["payload"]["max_tokens"] == 500
    assert call["timeout"] == 5


def test_compatible_uses_base_url_and_custom_model() -> None:
    transport = FakeTransport([_ok({"choices": [{"message": {"content": "好"}}]})])
    dispatcher = ProviderDispatcher(transport)
    config = _model(Provider.COMPATIBLE, base_url="https://llm.example.com/v1/", custom_model="qwen-plus")

    asyncio.run(dispatcher.rewrite(config, "sys", "user"))

    call = transport.calls[0]
    assert call["url"] == "https://llm.example.com/v1/chat/completions"
    assert call["payload"]["model"] == "qwen-plus"


def test_claude_request_shape() -> None:
    transport = FakeTransport([_ok({"content": [{"type": "text", "text": "开始使用"}]})])
    dispatcher = ProviderDispatcher(transport)

    result = asyncio.run(dispatcher.rewrite(_model(Provider.CLAUDE), "sys", "user"))

    assert result == "开始使用"
    call = transport.calls[0]
    assert call["url"] == "https://api.anthropic.com/v1/messages"
    assert call["headers"]["x-api-key"] == "sk-test"
    assert call["headers"]["anthropic-version"] == "2023-06-01"
    assert call["payload"]["system"] == "sys"
    assert call["payload"]["messages"] == [{"role": "user", "content": "user"}]


def test_gemini_request_shape() -> None:
    transport = FakeTransport([_ok({"candidates": [{"content": {"parts": [{"text": "搜索商品"}]}}]})])
    dispatcher = ProviderDispatcher(transport)

    result = asyncio.run(dispatcher.rewrite(_model(Provider.GEMINI, model="gemini-1.5-flash"), "sys", "user"))

    assert result == "搜索商品"
    call = transport.calls[0]
    assert call["url"] == (
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-1.5-flash:generateContent?key=sk-test"
    )
    assert call["payload"]["systemInstruction"] == {"parts": [{"text": "sys"}]}
    assert call["payload"]["generationConfig"]["maxOutputTokens"] == 500


def test_missing_field_raises_parse_error() -> None:
    transport = FakeTransport([_ok({"choices": []})])
    dispatcher = ProviderDispatcher(transport)

    with pytest.raises(ResponseParseError):
        asyncio.run(dispatcher.rewrite(_model(Provider.OPENAI), "sys", "user"))


def test_http_error_carries_server_message() -> None:
    body = json.dumps({"error": {"message": "Invalid API key"}})
    transport = FakeTransport([HttpResponse(401, body)])
    dispatcher = ProviderDispatcher(transport)

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(dispatcher.rewrite(_model(Provider.OPENAI), "sys", "user"))

    assert excinfo.value.status == 401
    assert "Invalid API key" in str(excinfo.value)


def test_describe_http_error_fallbacks() -> None:
    assert describe_http_error("Claude", 500, "") == "Claude API call failed with status 500"
    assert describe_http_error("Claude", 502, "Bad Gateway") == "Claude API error 502: Bad Gateway"
    assert describe_http_error("Gemini", 400, '{"message": "quota"}') == "Gemini API error 400: quota"


@pytest.mark.parametrize(
    "config",
    [
        SavedModelConfig(Provider.OPENAI, "gpt-4o", ""),
        SavedModelConfig(Provider.OPENAI, "", "sk-test"),
        SavedModelConfig(Provider.COMPATIBLE, "x", "sk-test", base_url="not a url"),
    ],
)
def test_invalid_config_fails_before_any_call(config: SavedModelConfig) -> None:
    transport = FakeTransport()
    dispatcher = ProviderDispatcher(transport)

    with pytest.raises(ConfigurationError):
        asyncio.run(dispatcher.rewrite(config, "sys", "user"))
    assert transport.calls == []


def test_connection_check_reports_success_and_failure() -> None:
    transport = FakeTransport(
        [
            _ok({"choices": [{"message": {"content": "测试"}}]}),
            HttpResponse(403, json.dumps({"error": "forbidden"})),
        ]
    )
    dispatcher = ProviderDispatcher(transport)
    model = _model(Provider.OPENAI)

    ok = asyncio.run(dispatcher.test_connection(model))
    failed = asyncio.run(dispatcher.test_connection(model))

    assert ok.success and ok.message == '连接成功！响应: "测试"'
    assert not failed.success and "forbidden" in failed.message
    assert "连接测试" in transport.calls[0]["payload"]["messages"][0]["content"]


def test_chat_replays_history() -> None:
    transport = FakeTransport([_ok({"choices": [{"message": {"content": "马上登录"}}]})])
    dispatcher = ProviderDispatcher(transport)
    history = [ChatTurn("user", "原文案：点击登录"), ChatTurn("assistant", "立即登录")]

    reply = asyncio.run(
        dispatcher.chat(_model(Provider.OPENAI), history, "换个说法", Category.BUTTON, "登录页")
    )

    assert reply == "马上登录"
    messages = transport.calls[0]["payload"]["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[-1]["content"] == "换个说法"


def test_chat_rejects_non_chat_completion_providers() -> None:
    dispatcher = ProviderDispatcher(FakeTransport())
    with pytest.raises(ConfigurationError):
        asyncio.run(dispatcher.chat(_model(Provider.GEMINI), [], "hi", Category.GENERAL, "x"))
