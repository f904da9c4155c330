from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from copytune.core.errors import ConfigurationError
from copytune.core.models import (
    BUILTIN_AGENT_ID,
    AgentConfig,
    BrandTerm,
    Category,
    HistoryRecord,
    OptimizationRule,
    Provider,
    ReferenceExample,
    SavedModelConfig,
)
from copytune.core.store import HISTORY_KEY, SETTINGS_KEY, ConfigurationStore


class MemoryStorage:
    def __init__(self, data: Optional[dict[str, Any]] = None) -> None:
        self.data: dict[str, Any] = dict(data or {})
        self.writes: list[str] = []

    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self.writes.append(key)
        self.data[key] = value


class BrokenStorage:
    async def get(self, key: str) -> Optional[Any]:
        raise OSError("disk on fire")

    async def set(self, key: str, value: Any) -> None:
        raise OSError("disk on fire")


def _record(index: int) -> HistoryRecord:
    return HistoryRecord(
        element_id=f"1:{index}",
        element_name=f"Text {index}",
        original=f"old {index}",
        optimized=f"new {index}",
        category=Category.GENERAL,
    )


def _loaded_store(storage: Any = None) -> ConfigurationStore:
    store = ConfigurationStore(storage or MemoryStorage())
    asyncio.run(store.load())
    return store


def test_load_failure_falls_back_to_defaults() -> None:
    store = _loaded_store(BrokenStorage())

    assert store.settings.active_agent_id == BUILTIN_AGENT_ID
    assert store.history == []
    assert asyncio.run(store.save()) is False


def test_history_evicts_oldest_beyond_limit() -> None:
    store = _loaded_store()
    asyncio.run(store.set_history_limit(3))

    for index in range(4):
        asyncio.run(store.add_history(_record(index)))

    assert [record.element_id for record in store.history] == ["1:3", "1:2", "1:1"]


def test_default_history_limit_applies_until_one_is_stored() -> None:
    store = ConfigurationStore(MemoryStorage(), default_history_limit=2)
    asyncio.run(store.load())
    assert store.settings.history_limit == 2

    for index in range(3):
        asyncio.run(store.add_history(_record(index)))
    assert [record.element_id for record in store.history] == ["1:2", "1:1"]

    stored = ConfigurationStore(MemoryStorage({SETTINGS_KEY: {"history_limit": 7}}), default_history_limit=2)
    asyncio.run(stored.load())
    assert stored.settings.history_limit == 7

    broken = ConfigurationStore(BrokenStorage(), default_history_limit=2)
    asyncio.run(broken.load())
    assert broken.settings.history_limit == 2


def test_default_history_limit_must_be_positive() -> None:
    with pytest.raises(ConfigurationError):
        ConfigurationStore(MemoryStorage(), default_history_limit=0)


def test_history_survives_reload_and_clear() -> None:
    storage = MemoryStorage()
    store = _loaded_store(storage)
    asyncio.run(store.add_history(_record(1)))

    reloaded = _loaded_store(storage)
    assert reloaded.history[0].optimized == "new 1"

    asyncio.run(reloaded.clear_history())
    assert storage.data[HISTORY_KEY] == []


def test_builtin_agent_cannot_be_deleted() -> None:
    store = _loaded_store()

    with pytest.raises(ConfigurationError):
        asyncio.run(store.delete_agent(BUILTIN_AGENT_ID))
    with pytest.raises(ConfigurationError):
        asyncio.run(store.add_agent(AgentConfig(name="impostor", builtin=True)))


def test_deleting_active_agent_resets_to_builtin() -> None:
    store = _loaded_store()
    agent = AgentConfig(name="电商", system_prompt="你是电商文案专家")
    asyncio.run(store.add_agent(agent))
    asyncio.run(store.set_active_agent(agent.id))
    assert store.system_prompt_override() == "你是电商文案专家"

    asyncio.run(store.delete_agent(agent.id))

    assert store.settings.active_agent_id == BUILTIN_AGENT_ID
    assert store.system_prompt_override() is None


def test_update_agent_keeps_builtin_flag() -> None:
    store = _loaded_store()
    builtin = store.active_agent()
    edited = AgentConfig(id=builtin.id, name="改名", builtin=False)

    asyncio.run(store.update_agent(edited))

    assert store.active_agent().builtin
    assert store.active_agent().name == "改名"


def test_effective_terms_and_rules_put_global_first() -> None:
    store = _loaded_store()
    agent = AgentConfig(
        name="品牌",
        brand_terms=[BrandTerm("App", "应用")],
        rules=[OptimizationRule("避免英文")],
    )
    asyncio.run(store.add_agent(agent))
    asyncio.run(store.set_active_agent(agent.id))
    asyncio.run(store.add_global_brand_term(BrandTerm.create("脚本", "插件")))
    asyncio.run(store.add_global_rule(OptimizationRule("简短")))

    assert [t.wrong for t in store.effective_brand_terms()] == ["脚本", "App"]
    assert [r.content for r in store.effective_rules()] == ["简短", "避免英文"]


def test_toggle_and_remove_global_term() -> None:
    store = _loaded_store()
    term = BrandTerm.create("脚本", "插件")
    asyncio.run(store.add_global_brand_term(term))

    asyncio.run(store.toggle_global_brand_term(term.id, False))
    assert store.settings.global_brand_terms[0].enabled is False

    asyncio.run(store.remove_global_brand_term(term.id))
    assert store.settings.global_brand_terms == []


def test_blank_brand_term_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        BrandTerm.create("  ", "插件")


def test_models_activate_and_remove() -> None:
    storage = MemoryStorage()
    store = _loaded_store(storage)
    first = SavedModelConfig(Provider.OPENAI, "gpt-4o", "k1")
    second = SavedModelConfig(Provider.GEMINI, "gemini-1.5-pro", "k2")

    asyncio.run(store.add_model(first))
    asyncio.run(store.add_model(second))
    assert store.active_model() == first

    asyncio.run(store.set_active_model(second.id))
    asyncio.run(store.remove_model(second.id))
    assert store.active_model() == first

    with pytest.raises(ConfigurationError):
        asyncio.run(store.set_active_model("missing"))
    assert storage.data[SETTINGS_KEY]["active_model_id"] == first.id


def test_reference_is_single_per_category() -> None:
    store = _loaded_store()
    asyncio.run(store.set_reference(ReferenceExample(Category.BUTTON, "a", "b")))
    asyncio.run(store.set_reference(ReferenceExample(Category.BUTTON, "c", "d")))

    assert store.reference_for(Category.BUTTON) == ReferenceExample(Category.BUTTON, "c", "d")
    asyncio.run(store.clear_reference(Category.BUTTON))
    assert store.reference_for(Category.BUTTON) is None


def test_listeners_are_notified_until_unsubscribed() -> None:
    store = _loaded_store()
    calls: list[int] = []
    unsubscribe = store.subscribe(lambda: calls.append(1))

    asyncio.run(store.add_global_rule(OptimizationRule("简短")))
    unsubscribe()
    asyncio.run(store.add_global_rule(OptimizationRule("友好")))

    assert calls == [1]


def test_failing_listener_does_not_block_save() -> None:
    storage = MemoryStorage()
    store = _loaded_store(storage)

    def explode() -> None:
        raise RuntimeError("boom")

    store.subscribe(explode)
    assert asyncio.run(store.add_global_rule(OptimizationRule("简短"))) is True
    assert storage.data[SETTINGS_KEY]["global_rules"][0]["content"] == "简短"
