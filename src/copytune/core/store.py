"""Settings and history store (core domain).

The store is an explicit context object: whoever needs settings receives the
instance, and UI surfaces register listeners instead of polling a global.
Every mutation rewrites the whole settings document through the key-value
port; there is no field-level persistence.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable, Optional

from copytune.core.errors import ConfigurationError
from copytune.core.migrations import settings_from_document, upgrade_history
from copytune.core.models import (
    BUILTIN_AGENT_ID,
    DEFAULT_HISTORY_LIMIT,
    AgentConfig,
    BrandTerm,
    Category,
    HistoryRecord,
    OptimizationRule,
    ReferenceExample,
    SavedModelConfig,
    Settings,
)
from copytune.core.ports import KeyValueStorePort

LOGGER = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
HISTORY_KEY = "history"

Listener = Callable[[], None]


class ConfigurationStore:
    """In-memory mirror of the persisted settings and history."""

    def __init__(self, backend: KeyValueStorePort, default_history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if default_history_limit < 1:
            raise ConfigurationError("History limit must be at least 1")
        self._backend = backend
        self._default_history_limit = default_history_limit
        self._settings = self._default_settings()
        self._history: list[HistoryRecord] = []
        self._listeners: list[Listener] = []

    def _default_settings(self) -> Settings:
        return Settings(history_limit=self._default_history_limit)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def history(self) -> list[HistoryRecord]:
        return list(self._history)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable unregisters it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                LOGGER.exception("Settings listener failed")

    async def load(self) -> Settings:
        """Load both documents, falling back to defaults on any failure."""

        try:
            raw_settings = await self._backend.get(SETTINGS_KEY)
            self._settings = settings_from_document(
                raw_settings if isinstance(raw_settings, dict) else None,
                self._default_history_limit,
            )
        except Exception:
            LOGGER.exception("Failed to load settings, using defaults")
            self._settings = self._default_settings()

        try:
            raw_history = await self._backend.get(HISTORY_KEY)
            records = [HistoryRecord.from_dict(raw) for raw in upgrade_history(raw_history)]
            self._history = records[: self._settings.history_limit]
        except Exception:
            LOGGER.exception("Failed to load history, starting empty")
            self._history = []

        self._notify()
        return self._settings

    async def save(self, settings: Optional[Settings] = None) -> bool:
        """Persist the whole settings aggregate."""

        if settings is not None:
            self._settings = settings
        self._notify()
        try:
            await self._backend.set(SETTINGS_KEY, self._settings.to_dict())
        except Exception:
            LOGGER.exception("Failed to save settings")
            return False
        return True

    async def _save_history(self) -> bool:
        try:
            await self._backend.set(HISTORY_KEY, [record.to_dict() for record in self._history])
        except Exception:
            LOGGER.exception("Failed to save history")
            return False
        return True

    # Agents

    def active_agent(self) -> AgentConfig:
        agent = self._settings.find_agent(self._settings.active_agent_id)
        return agent or self._builtin_agent()

    def _builtin_agent(self) -> AgentConfig:
        agent = self._settings.find_agent(BUILTIN_AGENT_ID)
        if agent is None:
            raise ConfigurationError("Built-in agent is missing")
        return agent

    async def set_active_agent(self, agent_id: Optional[str]) -> bool:
        if agent_id is not None and self._settings.find_agent(agent_id) is None:
            raise ConfigurationError(f"Unknown agent: {agent_id}")
        self._settings.active_agent_id = agent_id or BUILTIN_AGENT_ID
        return await self.save()

    async def add_agent(self, agent: AgentConfig) -> bool:
        if agent.builtin or agent.id == BUILTIN_AGENT_ID:
            raise ConfigurationError("Only one built-in agent may exist")
        if self._settings.find_agent(agent.id) is not None:
            raise ConfigurationError(f"Agent already exists: {agent.id}")
        self._settings.agents.append(agent)
        return await self.save()

    async def update_agent(self, agent: AgentConfig) -> bool:
        for index, existing in enumerate(self._settings.agents):
            if existing.id != agent.id:
                continue
            # The built-in flag is owned by the store, not by callers.
            agent.builtin = existing.builtin
            agent.updated_at = time.time()
            self._settings.agents[index] = agent
            return await self.save()
        raise ConfigurationError(f"Unknown agent: {agent.id}")

    async def delete_agent(self, agent_id: str) -> bool:
        agent = self._settings.find_agent(agent_id)
        if agent is None:
            raise ConfigurationError(f"Unknown agent: {agent_id}")
        if agent.builtin:
            raise ConfigurationError("The built-in agent cannot be deleted")
        self._settings.agents = [a for a in self._settings.agents if a.id != agent_id]
        if self._settings.active_agent_id == agent_id:
            self._settings.active_agent_id = BUILTIN_AGENT_ID
        return await self.save()

    # Saved models

    def active_model(self) -> Optional[SavedModelConfig]:
        return self._settings.find_model(self._settings.active_model_id)

    async def add_model(self, model: SavedModelConfig, activate: bool = False) -> bool:
        if self._settings.find_model(model.id) is not None:
            raise ConfigurationError(f"Saved model already exists: {model.id}")
        self._settings.saved_models.append(model)
        if activate or self._settings.active_model_id is None:
            self._settings.active_model_id = model.id
        return await self.save()

    async def update_model(self, model: SavedModelConfig) -> bool:
        for index, existing in enumerate(self._settings.saved_models):
            if existing.id == model.id:
                self._settings.saved_models[index] = model
                return await self.save()
        raise ConfigurationError(f"Unknown saved model: {model.id}")

    async def remove_model(self, model_id: str) -> bool:
        if self._settings.find_model(model_id) is None:
            raise ConfigurationError(f"Unknown saved model: {model_id}")
        self._settings.saved_models = [m for m in self._settings.saved_models if m.id != model_id]
        if self._settings.active_model_id == model_id:
            remaining = self._settings.saved_models
            self._settings.active_model_id = remaining[0].id if remaining else None
        return await self.save()

    async def set_active_model(self, model_id: Optional[str]) -> bool:
        if model_id is not None and self._settings.find_model(model_id) is None:
            raise ConfigurationError(f"Unknown saved model: {model_id}")
        self._settings.active_model_id = model_id
        return await self.save()

    # Global brand terms and rules

    async def add_global_brand_term(self, term: BrandTerm) -> bool:
        self._settings.global_brand_terms.append(term)
        return await self.save()

    async def remove_global_brand_term(self, term_id: str) -> bool:
        terms = self._settings.global_brand_terms
        self._settings.global_brand_terms = [t for t in terms if t.id != term_id]
        return await self.save()

    async def toggle_global_brand_term(self, term_id: str, enabled: bool) -> bool:
        self._settings.global_brand_terms = [
            dataclasses.replace(t, enabled=enabled) if t.id == term_id else t
            for t in self._settings.global_brand_terms
        ]
        return await self.save()

    async def add_global_rule(self, rule: OptimizationRule) -> bool:
        self._settings.global_rules.append(rule)
        return await self.save()

    async def remove_global_rule(self, rule_id: str) -> bool:
        rules = self._settings.global_rules
        self._settings.global_rules = [r for r in rules if r.id != rule_id]
        return await self.save()

    def effective_brand_terms(self) -> list[BrandTerm]:
        """Global terms followed by the active agent's own terms."""

        return [*self._settings.global_brand_terms, *self.active_agent().brand_terms]

    def effective_rules(self) -> list[OptimizationRule]:
        return [*self._settings.global_rules, *self.active_agent().rules]

    def system_prompt_override(self) -> Optional[str]:
        return self.active_agent().system_prompt or None

    # Reference examples

    def reference_for(self, category: Category) -> Optional[ReferenceExample]:
        return self._settings.reference_examples.get(category)

    async def set_reference(self, example: ReferenceExample) -> bool:
        """Store ``example`` as the single reference for its category."""

        self._settings.reference_examples[example.category] = example
        return await self.save()

    async def clear_reference(self, category: Category) -> bool:
        self._settings.reference_examples.pop(category, None)
        return await self.save()

    # History

    async def add_history(self, record: HistoryRecord) -> bool:
        """Insert at the head, then cut the tail to the configured limit."""

        self._history.insert(0, record)
        del self._history[self._settings.history_limit :]
        self._notify()
        return await self._save_history()

    async def clear_history(self) -> bool:
        self._history = []
        self._notify()
        return await self._save_history()

    async def set_history_limit(self, limit: int) -> bool:
        if limit < 1:
            raise ConfigurationError("History limit must be at least 1")
        self._settings.history_limit = limit
        del self._history[limit:]
        saved = await self.save()
        return await self._save_history() and saved
