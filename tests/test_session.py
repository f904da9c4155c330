from __future__ import annotations

import asyncio
import json
from typing import Any, Optional, Sequence

import pytest

from copytune.core.channel import HostBridge
from copytune.core.dispatcher import ProviderDispatcher
from copytune.core.errors import ConfigurationError
from copytune.core.models import AncestorRef, Category, Provider, SavedModelConfig, SceneElement
from copytune.core.ports import HttpResponse
from copytune.core.session import OptimizationSession, build_text_item
from copytune.core.store import ConfigurationStore


class FakeHost:
    def __init__(self, elements: list[SceneElement], locked: Sequence[str] = ()) -> None:
        self.elements = elements
        self.locked = set(locked)
        self.texts: dict[str, str] = {element.id: element.text for element in elements}

    async def scan(self, selection: Optional[Sequence[str]] = None) -> list[SceneElement]:
        if selection is None:
            return list(self.elements)
        return [element for element in self.elements if element.id in selection]

    async def set_text(self, element_id: str, text: str) -> bool:
        if element_id in self.locked or element_id not in self.texts:
            return False
        self.texts[element_id] = text
        return True


class MemoryStorage:
    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class EchoTransport:
    """Prefixes the user text with "优化:"; texts containing "fail" error out."""

    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    async def post_json(self, url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float) -> HttpResponse:
        self.payloads.append(payload)
        text = payload["messages"][-1]["content"].split("\n\n")[-1]
        if "fail" in text:
            return HttpResponse(429, json.dumps({"error": {"message": "rate limited"}}))
        return HttpResponse(200, json.dumps({"choices": [{"message": {"content": f"优化:{text}"}}]}))


async def _no_sleep(seconds: float) -> None:
    return None


ELEMENTS = [
    SceneElement("1:1", "submit-btn", "提交", (AncestorRef("Login", "FRAME"),), 14),
    SceneElement("1:2", "Text", "fail me", (AncestorRef("Login", "FRAME"),), 16),
    SceneElement("1:3", "Text", "   ", (), 16),
    SceneElement("1:4", "Text", "欢迎", (AncestorRef("Group", "GROUP"),), 30),
]


def _session(host: Any = None, with_model: bool = True) -> tuple[OptimizationSession, ConfigurationStore, EchoTransport]:
    store = ConfigurationStore(MemoryStorage())
    asyncio.run(store.load())
    if with_model:
        asyncio.run(store.add_model(SavedModelConfig(Provider.OPENAI, "gpt-4o-mini", "sk-test")))
    transport = EchoTransport()
    session = OptimizationSession(host or FakeHost(ELEMENTS), store, ProviderDispatcher(transport), sleep=_no_sleep)
    return session, store, transport


def test_build_text_item_derives_context_and_category() -> None:
    item = build_text_item(ELEMENTS[0])
    assert item.context == "Login"
    assert item.category == Category.BUTTON

    title = build_text_item(ELEMENTS[3])
    assert title.context == "未知位置"
    assert title.category == Category.TITLE


def test_scan_skips_blank_text() -> None:
    session, _, _ = _session()
    items = asyncio.run(session.scan())
    assert [item.id for item in items] == ["1:1", "1:2", "1:4"]


def test_optimize_without_model_is_a_configuration_error() -> None:
    session, _, transport = _session(with_model=False)
    asyncio.run(session.scan())

    with pytest.raises(ConfigurationError):
        asyncio.run(session.optimize("1:1"))
    assert transport.payloads == []


def test_optimize_all_leaves_failed_items_pending() -> None:
    session, _, _ = _session()
    asyncio.run(session.scan())

    report = asyncio.run(session.optimize_all())

    assert len(report.failures) == 1
    assert session.get("1:1").optimized == "优化:提交"
    assert session.get("1:2").optimized is None
    assert session.get("1:4").optimized == "优化:欢迎"


def test_optimize_all_by_category() -> None:
    session, _, transport = _session()
    asyncio.run(session.scan())

    asyncio.run(session.optimize_all(Category.BUTTON))

    assert len(transport.payloads) == 1
    assert session.get("1:4").optimized is None


def test_apply_records_history_and_revert_restores() -> None:
    host = FakeHost(ELEMENTS)
    session, store, _ = _session(host)
    asyncio.run(session.scan())
    asyncio.run(session.optimize("1:1"))

    assert asyncio.run(session.apply("1:1")) is True
    assert host.texts["1:1"] == "优化:提交"
    record = store.history[0]
    assert record.element_id == "1:1" and record.original == "提交"
    assert session.get("1:1").applied

    assert asyncio.run(session.revert(record)) is True
    assert host.texts["1:1"] == "提交"
    assert not session.get("1:1").applied


def test_rejected_apply_writes_no_history() -> None:
    host = FakeHost(ELEMENTS, locked=["1:1"])
    session, store, _ = _session(host)
    asyncio.run(session.scan())
    session.edit("1:1", "立即提交")

    assert asyncio.run(session.apply("1:1")) is False
    assert store.history == []
    assert not session.get("1:1").applied


def test_apply_without_rewrite_is_rejected() -> None:
    session, _, _ = _session()
    asyncio.run(session.scan())
    with pytest.raises(ConfigurationError):
        asyncio.run(session.apply("1:4"))


def test_apply_all_skips_unchanged_and_applied() -> None:
    session, _, _ = _session()
    asyncio.run(session.scan())
    session.edit("1:1", "立即提交")
    session.edit("1:4", "欢迎")

    assert asyncio.run(session.apply_all()) == 1
    assert asyncio.run(session.apply_all()) == 0


def test_reference_is_fed_into_later_prompts() -> None:
    session, store, transport = _session()
    asyncio.run(session.scan())
    session.edit("1:1", "立即提交")
    asyncio.run(session.use_as_reference("1:1"))

    assert store.reference_for(Category.BUTTON).optimized == "立即提交"
    asyncio.run(session.optimize("1:1"))
    assert "优化后：立即提交" in transport.payloads[-1]["messages"][0]["content"]


def test_refine_keeps_a_local_conversation() -> None:
    session, _, transport = _session()
    asyncio.run(session.scan())
    asyncio.run(session.optimize("1:1"))

    reply = asyncio.run(session.refine("1:1", "更口语化"))

    assert reply == "优化:更口语化"
    roles = [m["role"] for m in transport.payloads[-1]["messages"]]
    assert roles == ["system", "user", "assistant", "user"]
    assert [turn.role for turn in session.conversation("1:1")] == ["user", "assistant", "user", "assistant"]


def test_ignore_and_filter() -> None:
    session, _, _ = _session()
    asyncio.run(session.scan())
    session.ignore("1:2")

    assert [item.id for item in session.items] == ["1:1", "1:4"]
    assert [item.id for item in session.filter(Category.TITLE)] == ["1:4"]
    with pytest.raises(KeyError):
        session.get("1:2")


def test_session_over_host_bridge() -> None:
    host = FakeHost(ELEMENTS)
    store = ConfigurationStore(MemoryStorage())

    async def run() -> list[str]:
        await store.load()
        async with HostBridge(host) as remote:
            session = OptimizationSession(remote, store, ProviderDispatcher(EchoTransport()), sleep=_no_sleep)
            await session.scan(["1:1"])
            session.edit("1:1", "立即提交")
            await session.apply("1:1")
            return [item.id for item in session.items]

    assert asyncio.run(run()) == ["1:1"]
    assert host.texts["1:1"] == "立即提交"
