from __future__ import annotations

import asyncio
import json
from typing import Any

from copytune.core.batch import BatchItem, BatchOrchestrator, batch_optimize
from copytune.core.config import BatchConfig
from copytune.core.dispatcher import ProviderDispatcher
from copytune.core.models import Category, Provider, ReferenceExample, SavedModelConfig
from copytune.core.ports import HttpResponse


class ScriptedTransport:
    """Answers with the uppercased user text, or 500 for texts marked bad."""

    def __init__(self) -> None:
        self.prompts: list[dict[str, Any]] = []

    async def post_json(self, url: str, headers: dict[str, str], payload: dict[str, Any], timeout: float) -> HttpResponse:
        self.prompts.append(payload)
        text = payload["messages"][-1]["content"].split("\n\n", 1)[1]
        if "bad" in text:
            return HttpResponse(500, json.dumps({"error": {"message": "upstream exploded"}}))
        return HttpResponse(200, json.dumps({"choices": [{"message": {"content": text.upper()}}]}))


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


MODEL = SavedModelConfig(Provider.OPENAI, "gpt-4o-mini", "sk-test")


def _items(*texts: str) -> list[BatchItem]:
    return [BatchItem(text, Category.GENERAL, "页面") for text in texts]


def test_failed_item_keeps_original_and_batch_continues() -> None:
    transport = ScriptedTransport()
    sleep = RecordingSleep()
    progress: list[tuple[int, int]] = []
    orchestrator = BatchOrchestrator(ProviderDispatcher(transport), BatchConfig(delay_seconds=0.5), sleep)

    report = asyncio.run(
        orchestrator.run(_items("one", "bad two", "three"), MODEL, on_progress=lambda d, t: progress.append((d, t)))
    )

    assert [r.optimized for r in report.results] == ["ONE", "bad two", "THREE"]
    assert report.results[0].ok and report.results[2].ok
    assert "upstream exploded" in (report.results[1].error or "")
    assert report.failures == [report.results[1]]
    assert progress == [(1, 3), (2, 3), (3, 3)]
    assert sleep.delays == [0.5, 0.5]
    assert len(transport.prompts) == 3


def test_empty_batch_makes_no_calls() -> None:
    transport = ScriptedTransport()
    sleep = RecordingSleep()
    orchestrator = BatchOrchestrator(ProviderDispatcher(transport), sleep=sleep)

    report = asyncio.run(orchestrator.run([], MODEL))

    assert report.results == [] and report.total == 0
    assert transport.prompts == [] and sleep.delays == []


def test_cancel_returns_partial_results() -> None:
    transport = ScriptedTransport()
    cancel = asyncio.Event()
    orchestrator = BatchOrchestrator(ProviderDispatcher(transport), sleep=RecordingSleep())

    def on_progress(done: int, total: int) -> None:
        if done == 1:
            cancel.set()

    report = asyncio.run(orchestrator.run(_items("a", "b", "c"), MODEL, on_progress=on_progress, cancel_event=cancel))

    assert report.cancelled
    assert [r.optimized for r in report.results] == ["A"]
    assert len(transport.prompts) == 1


def test_reference_is_used_only_for_its_category() -> None:
    transport = ScriptedTransport()
    orchestrator = BatchOrchestrator(ProviderDispatcher(transport), sleep=RecordingSleep())
    items = [BatchItem("ok", Category.BUTTON, "弹窗"), BatchItem("fine", Category.TITLE, "首页")]
    references = {Category.BUTTON: ReferenceExample(Category.BUTTON, "点击提交", "立即提交")}

    asyncio.run(orchestrator.run(items, MODEL, references=references))

    assert "立即提交" in transport.prompts[0]["messages"][0]["content"]
    assert "立即提交" not in transport.prompts[1]["messages"][0]["content"]


def test_functional_shortcut_returns_results() -> None:
    transport = ScriptedTransport()
    dispatcher = ProviderDispatcher(transport)

    results = asyncio.run(
        batch_optimize(dispatcher, _items("x"), MODEL, config=BatchConfig(delay_seconds=0))
    )

    assert [r.optimized for r in results] == ["X"]
