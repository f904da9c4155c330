"""Optimisation session: the caller that ties host, store and providers.

A session owns the scanned ``TextItem`` list. Items are created per scan,
mutated in place while rewriting, editing and applying, and dropped when the
scan is cleared or re-run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from copytune.core.batch import BatchItem, BatchOrchestrator, BatchReport, ProgressCallback, Sleeper
from copytune.core.classifier import classify, context_names, derive_context_path
from copytune.core.config import BatchConfig
from copytune.core.dispatcher import ProviderDispatcher
from copytune.core.errors import ConfigurationError
from copytune.core.models import (
    Category,
    ChatTurn,
    HistoryRecord,
    ReferenceExample,
    SavedModelConfig,
    SceneElement,
    TextItem,
)
from copytune.core.ports import DocumentHostPort
from copytune.core.store import ConfigurationStore

LOGGER = logging.getLogger(__name__)


def build_text_item(element: SceneElement) -> TextItem:
    """Derive context path and category for one host element."""

    return TextItem(
        id=element.id,
        name=element.name,
        text=element.text,
        context=derive_context_path(element.ancestors),
        category=classify(element.text, context_names(element.name, element.ancestors), element.font_size),
        font_size=element.font_size,
        position=element.position,
    )


class OptimizationSession:
    """Scan, rewrite, review and apply text for one host document."""

    def __init__(
        self,
        host: DocumentHostPort,
        store: ConfigurationStore,
        dispatcher: ProviderDispatcher,
        batch_config: Optional[BatchConfig] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._host = host
        self._store = store
        self._dispatcher = dispatcher
        self._batch = BatchOrchestrator(dispatcher, batch_config, sleep)
        self.items: list[TextItem] = []
        self._conversations: dict[str, list[ChatTurn]] = {}

    async def scan(self, selection: Optional[Sequence[str]] = None) -> list[TextItem]:
        elements = await self._host.scan(selection)
        self.items = [build_text_item(element) for element in elements if element.text.strip()]
        self._conversations.clear()
        LOGGER.info("Scanned %s text elements", len(self.items))
        return self.items

    def clear(self) -> None:
        self.items = []
        self._conversations.clear()

    def get(self, item_id: str) -> TextItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise KeyError(item_id)

    def filter(self, category: Optional[Category] = None) -> list[TextItem]:
        if category is None:
            return list(self.items)
        return [item for item in self.items if item.category == category]

    def _require_model(self) -> SavedModelConfig:
        model = self._store.active_model()
        if model is None or not model.api_key.strip():
            raise ConfigurationError("No active model with an API key is configured")
        return model

    async def optimize(self, item_id: str) -> str:
        """Rewrite one item; failures propagate to the caller."""

        item = self.get(item_id)
        model = self._require_model()
        optimized = await self._dispatcher.optimize_text(
            item.text,
            item.category,
            item.context,
            model,
            self._store.effective_brand_terms(),
            self._store.effective_rules(),
            self._store.system_prompt_override(),
            self._store.reference_for(item.category),
        )
        item.optimized = optimized
        item.applied = False
        return optimized

    async def optimize_all(
        self,
        category: Optional[Category] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Batch-rewrite every (or every matching) item.

        Failed items are left without a rewrite so they stay visibly pending
        instead of looking already optimal.
        """

        targets = self.filter(category)
        model = self._require_model()
        report = await self._batch.run(
            [BatchItem(item.text, item.category, item.context) for item in targets],
            model,
            self._store.effective_brand_terms(),
            self._store.effective_rules(),
            self._store.system_prompt_override(),
            on_progress,
            self._store.settings.reference_examples,
            cancel_event,
        )
        for item, result in zip(targets, report.results):
            if result.ok:
                item.optimized = result.optimized
                item.applied = False
        if report.failures:
            LOGGER.warning("%s of %s batch items failed", len(report.failures), report.total)
        return report

    def edit(self, item_id: str, text: str) -> TextItem:
        item = self.get(item_id)
        item.optimized = text
        item.applied = False
        return item

    def ignore(self, item_id: str) -> None:
        self.items = [item for item in self.items if item.id != item_id]
        self._conversations.pop(item_id, None)

    async def apply(self, item_id: str) -> bool:
        """Write the rewrite into the host and record it in history."""

        item = self.get(item_id)
        if not item.optimized:
            raise ConfigurationError(f"Item {item_id} has no rewrite to apply")
        success = await self._host.set_text(item.id, item.optimized)
        if not success:
            LOGGER.warning("Host rejected text update for %s", item.id)
            return False
        item.applied = True
        await self._store.add_history(
            HistoryRecord(
                element_id=item.id,
                element_name=item.name,
                original=item.text,
                optimized=item.optimized,
                category=item.category,
                applied=True,
            )
        )
        return True

    async def apply_all(self) -> int:
        applied = 0
        for item in self.items:
            if item.optimized and not item.applied and item.optimized != item.text:
                if await self.apply(item.id):
                    applied += 1
        return applied

    async def revert(self, record: HistoryRecord) -> bool:
        """Restore the original text recorded in ``record``."""

        success = await self._host.set_text(record.element_id, record.original)
        if success:
            for item in self.items:
                if item.id == record.element_id:
                    item.applied = False
        return success

    async def use_as_reference(self, item_id: str) -> ReferenceExample:
        """Make this item's rewrite the style reference for its category."""

        item = self.get(item_id)
        if not item.optimized:
            raise ConfigurationError(f"Item {item_id} has no rewrite to use as reference")
        example = ReferenceExample(item.category, item.text, item.optimized)
        await self._store.set_reference(example)
        return example

    def conversation(self, item_id: str) -> list[ChatTurn]:
        return list(self._conversations.get(item_id, []))

    async def refine(self, item_id: str, message: str) -> str:
        """Continue the item's local conversation with one more instruction."""

        item = self.get(item_id)
        model = self._require_model()
        turns = self._conversations.setdefault(item_id, [])
        if not turns:
            turns.append(ChatTurn("user", f"原文案：{item.text}"))
            if item.optimized:
                turns.append(ChatTurn("assistant", item.optimized))
        reply = await self._dispatcher.chat(
            model,
            turns,
            message,
            item.category,
            item.context,
            self._store.effective_brand_terms(),
            self._store.effective_rules(),
        )
        turns.extend([ChatTurn("user", message), ChatTurn("assistant", reply)])
        item.optimized = reply
        item.applied = False
        return reply
