"""Versioned upgrades for persisted settings and history documents.

Layouts:
- v1: legacy camelCase record; every agent embeds its own ``modelConfig``
  and there is no saved-model list.
- v2: snake_case keys; the single legacy model survives as ``model_config``.
- v3: legacy model moved into ``saved_models`` and pointed to by
  ``active_model_id``.

Every step is pure (the input is never mutated) and safe to re-run.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Optional

from copytune.core.errors import UnsupportedProviderError
from copytune.core.models import (
    BUILTIN_AGENT_ID,
    DEFAULT_HISTORY_LIMIT,
    SCHEMA_VERSION,
    AgentConfig,
    BrandTerm,
    Category,
    OptimizationRule,
    ReferenceExample,
    SavedModelConfig,
    Settings,
    builtin_agent,
    new_id,
)

LOGGER = logging.getLogger(__name__)

CATEGORY_VALUES = frozenset(category.value for category in Category)
_LEGACY_MARKERS = ("activeAgentId", "globalBrandTerms", "globalRules", "historyLimit", "modelConfig")

_MODEL_KEYS = {
    "provider": "provider",
    "model": "model",
    "apiKey": "api_key",
    "baseUrl": "base_url",
    "customModel": "custom_model",
}


def _seconds(value: Any) -> Optional[float]:
    # Legacy timestamps were stored in milliseconds.
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    return value / 1000.0 if value > 1e11 else float(value)


def detect_version(document: dict[str, Any]) -> int:
    version = document.get("schema_version")
    if isinstance(version, int) and not isinstance(version, bool):
        return version
    if any(marker in document for marker in _LEGACY_MARKERS):
        return 1
    for agent in document.get("agents") or []:
        if isinstance(agent, dict) and ("systemPrompt" in agent or "modelConfig" in agent):
            return 1
    return 2


def _legacy_model(raw: Any) -> Optional[dict[str, Any]]:
    if not isinstance(raw, dict):
        return None
    return {new_key: raw.get(old_key) for old_key, new_key in _MODEL_KEYS.items() if old_key in raw}


def _agent_v1_to_v2(agent: dict[str, Any]) -> dict[str, Any]:
    upgraded = {
        "id": agent.get("id"),
        "name": agent.get("name", ""),
        "description": agent.get("description", ""),
        "system_prompt": agent.get("systemPrompt", ""),
        "brand_terms": list(agent.get("brandTerms") or []),
        "rules": list(agent.get("rules") or []),
        "builtin": bool(agent.get("isBuiltin", False)),
        "created_at": _seconds(agent.get("createdAt")),
        "updated_at": _seconds(agent.get("updatedAt")),
    }
    return {key: value for key, value in upgraded.items() if value is not None}


def _pick_legacy_model(document: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Top-level model first, then the active agent's, then any agent with a key."""

    top_level = _legacy_model(document.get("modelConfig"))
    if top_level and top_level.get("api_key"):
        return top_level
    agents = [agent for agent in document.get("agents") or [] if isinstance(agent, dict)]
    active_id = document.get("activeAgentId")
    ordered = sorted(agents, key=lambda agent: agent.get("id") != active_id)
    for agent in ordered:
        candidate = _legacy_model(agent.get("modelConfig"))
        if candidate and candidate.get("api_key"):
            return candidate
    return top_level


def upgrade_v1_to_v2(document: dict[str, Any]) -> dict[str, Any]:
    agents = [agent for agent in document.get("agents") or [] if isinstance(agent, dict)]
    upgraded = {
        "schema_version": 2,
        "active_agent_id": document.get("activeAgentId"),
        "agents": [_agent_v1_to_v2(agent) for agent in agents],
        "active_model_id": document.get("activeModelId"),
        "saved_models": copy.deepcopy(document.get("savedModels") or []),
        "global_brand_terms": copy.deepcopy(document.get("globalBrandTerms") or []),
        "global_rules": copy.deepcopy(document.get("globalRules") or []),
        "history_limit": document.get("historyLimit"),
        "model_config": _pick_legacy_model(document),
    }
    upgraded["saved_models"] = [
        {_MODEL_KEYS.get(key, key): value for key, value in model.items()}
        for model in upgraded["saved_models"]
        if isinstance(model, dict)
    ]
    return {key: value for key, value in upgraded.items() if value is not None}


def upgrade_v2_to_v3(document: dict[str, Any]) -> dict[str, Any]:
    """Move the single legacy model into the saved-model list.

    Only runs when the legacy model has a credential and no saved models
    exist yet, so applying it to already-migrated data changes nothing.
    """

    upgraded = copy.deepcopy(document)
    legacy = upgraded.pop("model_config", None)
    saved_models = upgraded.get("saved_models") or []
    if isinstance(legacy, dict) and str(legacy.get("api_key") or "").strip() and not saved_models:
        model_id = new_id()
        upgraded["saved_models"] = [
            {
                "id": model_id,
                "provider": legacy.get("provider") or "openai",
                "model": legacy.get("model") or "",
                "api_key": legacy["api_key"],
                "base_url": legacy.get("base_url"),
                "custom_model": legacy.get("custom_model"),
            }
        ]
        upgraded["active_model_id"] = model_id
        LOGGER.info("Migrated legacy model configuration into saved models")
    upgraded["schema_version"] = 3
    return upgraded


UPGRADES: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: upgrade_v1_to_v2,
    2: upgrade_v2_to_v3,
}


def upgrade_settings(document: dict[str, Any]) -> dict[str, Any]:
    """Run every upgrade step from the document's version to the current one."""

    version = detect_version(document)
    current = document
    while version < SCHEMA_VERSION:
        current = UPGRADES[version](current)
        version += 1
    if current is document:
        current = copy.deepcopy(document)
    return current


def upgrade_history(records: Any) -> list[dict[str, Any]]:
    """Normalise legacy camelCase history records."""

    upgraded: list[dict[str, Any]] = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        if "nodeId" in record or "nodeName" in record:
            record = {
                "id": record.get("id"),
                "element_id": record.get("nodeId", ""),
                "element_name": record.get("nodeName", ""),
                "original": record.get("original", ""),
                "optimized": record.get("optimized", ""),
                "category": record.get("category"),
                "timestamp": _seconds(record.get("timestamp")) or 0.0,
                "applied": record.get("applied", True),
            }
        upgraded.append(record)
    return upgraded


def _saved_models(raw_models: list[Any]) -> list[SavedModelConfig]:
    models: list[SavedModelConfig] = []
    for raw in raw_models:
        if not isinstance(raw, dict):
            continue
        try:
            models.append(SavedModelConfig.from_dict(raw))
        except UnsupportedProviderError as exc:
            LOGGER.warning("Dropping saved model %s: %s", raw.get("id"), exc)
    return models


def settings_from_document(
    document: Optional[dict[str, Any]],
    default_history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> Settings:
    """Upgrade a stored document and merge it over the defaults.

    ``default_history_limit`` applies only when the document stores no
    valid limit of its own.
    """

    settings = Settings(history_limit=default_history_limit)
    if not document:
        return settings

    data = upgrade_settings(document)
    agents = [AgentConfig.from_dict(raw) for raw in data.get("agents") or [] if isinstance(raw, dict)]
    # Exactly one built-in agent, always first.
    custom_agents = [agent for agent in agents if agent.id != BUILTIN_AGENT_ID and not agent.builtin]
    stored_builtin = next((agent for agent in agents if agent.id == BUILTIN_AGENT_ID), None)
    if stored_builtin is not None:
        stored_builtin.builtin = True
    settings.agents = [stored_builtin or builtin_agent(), *custom_agents]

    active_agent_id = data.get("active_agent_id")
    settings.active_agent_id = active_agent_id if settings.find_agent(active_agent_id) else BUILTIN_AGENT_ID

    settings.saved_models = _saved_models(data.get("saved_models") or [])
    active_model_id = data.get("active_model_id")
    if settings.find_model(active_model_id) is None:
        active_model_id = settings.saved_models[0].id if settings.saved_models else None
    settings.active_model_id = active_model_id

    if "global_brand_terms" in data:
        settings.global_brand_terms = [BrandTerm.from_dict(raw) for raw in data["global_brand_terms"]]
    if "global_rules" in data:
        settings.global_rules = [OptimizationRule.from_dict(raw) for raw in data["global_rules"]]
    references = data.get("reference_examples") or {}
    settings.reference_examples = {
        Category.coerce(key): ReferenceExample.from_dict(raw)
        for key, raw in references.items()
        if isinstance(raw, dict) and key in CATEGORY_VALUES
    }
    limit = data.get("history_limit")
    if isinstance(limit, int) and not isinstance(limit, bool) and limit > 0:
        settings.history_limit = limit
    return settings
