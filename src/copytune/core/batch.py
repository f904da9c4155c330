"""Sequential batch optimisation (core domain).

Items are processed strictly one at a time in input order. A failed item
keeps its original text and carries the error; the loop always moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from copytune.core.config import BatchConfig
from copytune.core.dispatcher import ProviderDispatcher
from copytune.core.models import (
    BatchResult,
    BrandTerm,
    Category,
    OptimizationRule,
    ReferenceExample,
    SavedModelConfig,
)

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BatchItem:
    text: str
    category: Category
    context: str


@dataclass(frozen=True)
class BatchReport:
    results: list[BatchResult]
    total: int
    cancelled: bool = False

    @property
    def failures(self) -> list[BatchResult]:
        return [result for result in self.results if not result.ok]


class BatchOrchestrator:
    """Drive the dispatcher over many items with a fixed inter-call delay."""

    def __init__(
        self,
        dispatcher: ProviderDispatcher,
        config: Optional[BatchConfig] = None,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._dispatcher = dispatcher
        self._config = config or BatchConfig()
        self._sleep = sleep

    async def run(
        self,
        items: Sequence[BatchItem],
        model: SavedModelConfig,
        brand_terms: Sequence[BrandTerm] = (),
        rules: Sequence[OptimizationRule] = (),
        custom_system_prompt: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        references: Optional[dict[Category, ReferenceExample]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Optimise ``items`` in order and report per-item outcomes.

        Setting ``cancel_event`` stops further calls; results gathered so far
        are returned unchanged.
        """

        references = references or {}
        total = len(items)
        results: list[BatchResult] = []

        for index, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("Batch cancelled after %s of %s items", index, total)
                return BatchReport(results=results, total=total, cancelled=True)

            try:
                optimized = await self._dispatcher.optimize_text(
                    item.text,
                    item.category,
                    item.context,
                    model,
                    brand_terms,
                    rules,
                    custom_system_prompt,
                    references.get(item.category),
                )
                results.append(BatchResult(original=item.text, optimized=optimized))
            except Exception as exc:
                message = str(exc) or exc.__class__.__name__
                LOGGER.warning("Batch item %s/%s failed: %s", index + 1, total, message)
                results.append(BatchResult(original=item.text, optimized=item.text, error=message))

            if on_progress is not None:
                on_progress(index + 1, total)

            if index < total - 1:
                await self._sleep(self._config.delay_seconds)

        return BatchReport(results=results, total=total)


async def batch_optimize(
    dispatcher: ProviderDispatcher,
    items: Sequence[BatchItem],
    model: SavedModelConfig,
    brand_terms: Sequence[BrandTerm] = (),
    rules: Sequence[OptimizationRule] = (),
    custom_system_prompt: Optional[str] = None,
    on_progress: Optional[ProgressCallback] = None,
    config: Optional[BatchConfig] = None,
) -> list[BatchResult]:
    """Functional shortcut returning only the result sequence."""

    report = await BatchOrchestrator(dispatcher, config).run(
        items,
        model,
        brand_terms,
        rules,
        custom_system_prompt,
        on_progress,
    )
    return report.results
