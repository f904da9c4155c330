"""Provider wire formats (core domain).

Each ``Provider`` maps to exactly one ``WireFormat`` carrying its request
builder and response parser. ``WIRE_FORMATS`` covers every enum member, so
dispatch never needs a runtime default branch; unknown tags are rejected
earlier by ``Provider.parse``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence
from urllib.parse import quote, urlparse

from copytune.core.config import DispatchConfig
from copytune.core.errors import ConfigurationError, ResponseParseError
from copytune.core.models import Provider, SavedModelConfig

ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_BASE_URLS: dict[Provider, str] = {
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.CLAUDE: "https://api.anthropic.com/v1",
    Provider.GEMINI: "https://generativelanguage.googleapis.com/v1beta",
    Provider.COMPATIBLE: "https://api.openai.com/v1",
}


@dataclass(frozen=True)
class ModelPreset:
    provider: Provider
    model: str
    name: str
    description: str


MODEL_PRESETS: list[ModelPreset] = [
    ModelPreset(Provider.OPENAI, "gpt-4o", "GPT-4o", "最新最强，推荐使用"),
    ModelPreset(Provider.OPENAI, "gpt-4o-mini", "GPT-4o Mini", "性价比高，速度快"),
    ModelPreset(Provider.OPENAI, "gpt-4-turbo", "GPT-4 Turbo", "强大稳定"),
    ModelPreset(Provider.CLAUDE, "claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "最新版本，能力强"),
    ModelPreset(Provider.CLAUDE, "claude-3-opus-20240229", "Claude 3 Opus", "最强推理能力"),
    ModelPreset(Provider.CLAUDE, "claude-3-haiku-20240307", "Claude 3 Haiku", "快速响应"),
    ModelPreset(Provider.GEMINI, "gemini-1.5-pro", "Gemini 1.5 Pro", "长上下文支持"),
    ModelPreset(Provider.GEMINI, "gemini-1.5-flash", "Gemini 1.5 Flash", "快速高效"),
    ModelPreset(Provider.COMPATIBLE, "custom", "自定义模型", "支持 OpenAI 兼容 API"),
]


@dataclass(frozen=True)
class HttpRequest:
    url: str
    headers: dict[str, str]
    payload: dict[str, Any]


RequestBuilder = Callable[[SavedModelConfig, str, str, DispatchConfig], HttpRequest]
ResponseParser = Callable[[Any], str]


@dataclass(frozen=True)
class WireFormat:
    """Request construction and response parsing for one API family."""

    label: str
    build_request: RequestBuilder
    parse_response: ResponseParser


def join_url(base: str, path: str) -> str:
    """Join ``base`` and ``path`` with exactly one slash between them."""

    return f"{base.rstrip('/')}/{path.lstrip('/')}"


def base_url_for(config: SavedModelConfig) -> str:
    return config.base_url or DEFAULT_BASE_URLS[config.provider]


def validate_model_config(config: SavedModelConfig) -> None:
    """Reject configurations that cannot possibly succeed before any I/O."""

    if not config.api_key or not config.api_key.strip():
        raise ConfigurationError(f"API key is missing for {config.label}")
    if not config.effective_model.strip():
        raise ConfigurationError(f"Model name is missing for {config.label}")
    if config.base_url:
        parsed = urlparse(config.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Malformed base URL: {config.base_url}")


def _dig(data: Any, *path: Any) -> Any:
    current = data
    walked: list[str] = []
    for key in path:
        walked.append(str(key))
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            raise ResponseParseError(
                f"Unexpected response shape: missing {'.'.join(walked)}"
            ) from None
    return current


def _text_at(data: Any, *path: Any) -> str:
    value = _dig(data, *path)
    if not isinstance(value, str):
        raise ResponseParseError(
            f"Unexpected response shape: {'.'.join(str(p) for p in path)} is not text"
        )
    return value.strip()


def build_chat_completion_request(
    config: SavedModelConfig,
    messages: Sequence[dict[str, str]],
    dispatch: DispatchConfig,
) -> HttpRequest:
    return HttpRequest(
        url=join_url(base_url_for(config), "chat/completions"),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        },
        payload={
            "model": config.effective_model,
            "messages": list(messages),
            "temperature": dispatch.temperature,
            "max_tokens": dispatch.max_tokens,
        },
    )


def _build_chat_completion(
    config: SavedModelConfig, system_prompt: str, user_prompt: str, dispatch: DispatchConfig
) -> HttpRequest:
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]
    return build_chat_completion_request(config, messages, dispatch)


def parse_chat_completion(data: Any) -> str:
    return _text_at(data, "choices", 0, "message", "content")


def _build_messages(
    config: SavedModelConfig, system_prompt: str, user_prompt: str, dispatch: DispatchConfig
) -> HttpRequest:
    return HttpRequest(
        url=join_url(base_url_for(config), "messages"),
        headers={
            "Content-Type": "application/json",
            "x-api-key": config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        },
        payload={
            "model": config.effective_model,
            "max_tokens": dispatch.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        },
    )


def parse_messages(data: Any) -> str:
    return _text_at(data, "content", 0, "text")


def _build_generate_content(
    config: SavedModelConfig, system_prompt: str, user_prompt: str, dispatch: DispatchConfig
) -> HttpRequest:
    model = quote(config.effective_model, safe="")
    path = f"models/{model}:generateContent?key={quote(config.api_key, safe='')}"
    return HttpRequest(
        url=join_url(base_url_for(config), path),
        headers={"Content-Type": "application/json"},
        payload={
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"parts": [{"text": user_prompt}]}],
            "generationConfig": {
                "temperature": dispatch.temperature,
                "maxOutputTokens": dispatch.max_tokens,
            },
        },
    )


def parse_generate_content(data: Any) -> str:
    return _text_at(data, "candidates", 0, "content", "parts", 0, "text")


CHAT_COMPLETION = WireFormat("OpenAI", _build_chat_completion, parse_chat_completion)
MESSAGES = WireFormat("Claude", _build_messages, parse_messages)
GENERATE_CONTENT = WireFormat("Gemini", _build_generate_content, parse_generate_content)

WIRE_FORMATS: dict[Provider, WireFormat] = {
    Provider.OPENAI: CHAT_COMPLETION,
    # Self-hosted and third-party endpoints speak the chat-completion schema.
    Provider.COMPATIBLE: CHAT_COMPLETION,
    Provider.CLAUDE: MESSAGES,
    Provider.GEMINI: GENERATE_CONTENT,
}


def wire_format_for(provider: Provider) -> WireFormat:
    return WIRE_FORMATS[provider]


def extract_error_message(body: str) -> Optional[str]:
    """Return the server-reported error message from a JSON body, if any."""

    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    message = data.get("message")
    if isinstance(message, str) and message:
        return message
    return None


def describe_http_error(label: str, status: int, body: str) -> str:
    """Human-readable failure for a non-2xx response."""

    message = extract_error_message(body)
    if message:
        return f"{label} API error {status}: {message}"
    if body and body.strip():
        return f"{label} API error {status}: {body.strip()}"
    return f"{label} API call failed with status {status}"
