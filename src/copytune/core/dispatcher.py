"""Provider dispatch over an injected HTTP transport."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from copytune.core.config import DispatchConfig
from copytune.core.errors import ConfigurationError, CopytuneError, ProviderError, ResponseParseError
from copytune.core.models import (
    BrandTerm,
    Category,
    ChatTurn,
    OptimizationRule,
    Provider,
    ReferenceExample,
    SavedModelConfig,
)
from copytune.core.ports import HttpTransportPort
from copytune.core.prompts import build_chat_system_prompt, build_prompt
from copytune.core.providers import (
    CHAT_COMPLETION,
    HttpRequest,
    WireFormat,
    build_chat_completion_request,
    describe_http_error,
    validate_model_config,
    wire_format_for,
)

LOGGER = logging.getLogger(__name__)

CONNECTION_TEST_TEXT = "测试"
CONNECTION_TEST_CONTEXT = "连接测试"


@dataclass(frozen=True)
class ConnectionCheck:
    success: bool
    message: str


class ProviderDispatcher:
    """Uniform ``rewrite`` contract over every supported provider."""

    def __init__(self, transport: HttpTransportPort, config: Optional[DispatchConfig] = None) -> None:
        self._transport = transport
        self._config = config or DispatchConfig()

    async def _send(self, wire: WireFormat, request: HttpRequest, config: SavedModelConfig) -> str:
        # Never log the URL: generate-content requests carry the key in it.
        LOGGER.debug("Calling %s model %s", wire.label, config.effective_model)
        response = await self._transport.post_json(
            request.url,
            request.headers,
            request.payload,
            timeout=self._config.timeout_seconds,
        )
        if not response.ok:
            raise ProviderError(
                describe_http_error(wire.label, response.status, response.text),
                status=response.status,
            )
        try:
            data = json.loads(response.text)
        except ValueError:
            raise ResponseParseError(
                f"{wire.label} returned a non-JSON body", status=response.status
            ) from None
        return wire.parse_response(data)

    async def rewrite(self, config: SavedModelConfig, system_prompt: str, user_prompt: str) -> str:
        """Send one system/user prompt pair and return the trimmed reply."""

        validate_model_config(config)
        wire = wire_format_for(config.provider)
        request = wire.build_request(config, system_prompt, user_prompt, self._config)
        return await self._send(wire, request, config)

    async def optimize_text(
        self,
        text: str,
        category: Category,
        context_path: str,
        config: SavedModelConfig,
        brand_terms: Sequence[BrandTerm] = (),
        rules: Sequence[OptimizationRule] = (),
        custom_system_prompt: Optional[str] = None,
        reference: Optional[ReferenceExample] = None,
    ) -> str:
        prompt = build_prompt(
            text,
            category,
            context_path,
            brand_terms,
            rules,
            custom_system_prompt,
            reference,
        )
        return await self.rewrite(config, prompt.system, prompt.user)

    async def test_connection(self, config: SavedModelConfig) -> ConnectionCheck:
        """Best-effort probe that the configuration is reachable and authorised."""

        try:
            result = await self.optimize_text(
                CONNECTION_TEST_TEXT,
                Category.GENERAL,
                CONNECTION_TEST_CONTEXT,
                config,
            )
        except CopytuneError as exc:
            return ConnectionCheck(False, str(exc))
        except Exception as exc:
            LOGGER.exception("Connection test failed for %s", config.label)
            return ConnectionCheck(False, str(exc) or exc.__class__.__name__)
        return ConnectionCheck(True, f"连接成功！响应: \"{result}\"")

    async def chat(
        self,
        config: SavedModelConfig,
        history: Sequence[ChatTurn],
        message: str,
        category: Category,
        context_path: str,
        brand_terms: Sequence[BrandTerm] = (),
        rules: Sequence[OptimizationRule] = (),
    ) -> str:
        """Replay a local conversation plus one new user turn.

        Only chat-completion endpoints support this; the conversation lives
        entirely on the caller's side.
        """

        if config.provider not in (Provider.OPENAI, Provider.COMPATIBLE):
            raise ConfigurationError(
                f"Multi-turn refinement needs an OpenAI-compatible model, got {config.provider.value}"
            )
        validate_model_config(config)
        system_prompt = build_chat_system_prompt(category, context_path, brand_terms, rules)
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(turn.to_message() for turn in history)
        messages.append({"role": "user", "content": message})
        request = build_chat_completion_request(config, messages, self._config)
        return await self._send(CHAT_COMPLETION, request, config)
