"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any host-document or storage specific types. Persisted shapes
use snake_case keys; see ``core.migrations`` for older layouts.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from copytune.core.errors import ConfigurationError, UnsupportedProviderError

SCHEMA_VERSION = 3
DEFAULT_HISTORY_LIMIT = 100
BUILTIN_AGENT_ID = "builtin-default"


def new_id() -> str:
    return uuid.uuid4().hex


class Category(str, Enum):
    """Functional role of a text element. Declaration order is match order."""

    BUTTON = "button"
    TITLE = "title"
    DESCRIPTION = "description"
    PLACEHOLDER = "placeholder"
    FEEDBACK = "feedback"
    LABEL = "label"
    LINK = "link"
    GENERAL = "general"

    @classmethod
    def coerce(cls, value: Any) -> "Category":
        """Return the matching category, falling back to ``GENERAL``."""

        try:
            return cls(value)
        except ValueError:
            return cls.GENERAL


class Provider(str, Enum):
    """Supported LLM wire-protocol families."""

    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    COMPATIBLE = "compatible"

    @classmethod
    def parse(cls, tag: str) -> "Provider":
        """Return the provider for ``tag`` or raise ``UnsupportedProviderError``."""

        try:
            return cls(tag.strip().lower())
        except ValueError:
            raise UnsupportedProviderError(tag) from None


@dataclass(frozen=True)
class AncestorRef:
    """One ancestor of a text element as reported by the host."""

    name: str
    node_type: str


@dataclass(frozen=True)
class SceneElement:
    """Text-bearing element read from the host document.

    ``ancestors`` is ordered nearest-first (parent, grandparent, ...).
    """

    id: str
    name: str
    text: str
    ancestors: tuple[AncestorRef, ...] = ()
    font_size: Optional[float] = None
    position: tuple[float, float] = (0.0, 0.0)


@dataclass
class TextItem:
    """A scanned text element moving through rewrite, edit and apply."""

    id: str
    name: str
    text: str
    context: str
    category: Category
    font_size: Optional[float] = None
    position: tuple[float, float] = (0.0, 0.0)
    optimized: Optional[str] = None
    applied: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "text": self.text,
            "context": self.context,
            "category": self.category.value,
            "font_size": self.font_size,
            "position": {"x": self.position[0], "y": self.position[1]},
            "optimized": self.optimized,
            "applied": self.applied,
        }


@dataclass(frozen=True)
class BrandTerm:
    """Forced lexical substitution applied while rewriting."""

    wrong: str
    correct: str
    enabled: bool = True
    id: str = field(default_factory=new_id)

    @classmethod
    def create(cls, wrong: str, correct: str, enabled: bool = True) -> "BrandTerm":
        wrong = wrong.strip()
        correct = correct.strip()
        if not wrong or not correct:
            raise ConfigurationError("Brand term needs both a wrong and a correct phrase")
        return cls(wrong=wrong, correct=correct, enabled=enabled)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BrandTerm":
        return cls(
            wrong=str(data.get("wrong", "")),
            correct=str(data.get("correct", "")),
            enabled=bool(data.get("enabled", True)),
            id=str(data.get("id") or new_id()),
        )


@dataclass(frozen=True)
class OptimizationRule:
    """Free-text instruction, optionally restricted to one category."""

    content: str
    category: Optional[Category] = None
    enabled: bool = True
    id: str = field(default_factory=new_id)

    def applies_to(self, category: Category) -> bool:
        return self.enabled and (self.category is None or self.category == category)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category.value if self.category else None,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimizationRule":
        raw_category = data.get("category")
        return cls(
            content=str(data.get("content", "")),
            category=Category.coerce(raw_category) if raw_category else None,
            enabled=bool(data.get("enabled", True)),
            id=str(data.get("id") or new_id()),
        )


@dataclass
class AgentConfig:
    """Named bundle of system-prompt override, brand terms and rules."""

    name: str
    description: str = ""
    system_prompt: str = ""
    brand_terms: list[BrandTerm] = field(default_factory=list)
    rules: list[OptimizationRule] = field(default_factory=list)
    builtin: bool = False
    id: str = field(default_factory=new_id)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "system_prompt": self.system_prompt,
            "brand_terms": [term.to_dict() for term in self.brand_terms],
            "rules": [rule.to_dict() for rule in self.rules],
            "builtin": self.builtin,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        now = time.time()
        return cls(
            id=str(data.get("id") or new_id()),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            system_prompt=str(data.get("system_prompt") or ""),
            brand_terms=[BrandTerm.from_dict(t) for t in data.get("brand_terms", [])],
            rules=[OptimizationRule.from_dict(r) for r in data.get("rules", [])],
            builtin=bool(data.get("builtin", False)),
            created_at=float(data.get("created_at", now)),
            updated_at=float(data.get("updated_at", now)),
        )


def builtin_agent() -> AgentConfig:
    return AgentConfig(
        id=BUILTIN_AGENT_ID,
        name="默认优化助手",
        description="通用文案优化 Agent",
        builtin=True,
    )


@dataclass(frozen=True)
class SavedModelConfig:
    """Credentialed backend configuration owned by the settings store."""

    provider: Provider
    model: str
    api_key: str
    base_url: Optional[str] = None
    custom_model: Optional[str] = None
    name: str = ""
    id: str = field(default_factory=new_id)

    @property
    def effective_model(self) -> str:
        return self.custom_model or self.model

    @property
    def label(self) -> str:
        return self.name or f"{self.provider.value}/{self.effective_model}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "provider": self.provider.value,
            "model": self.model,
            "api_key": self.api_key,
            "base_url": self.base_url,
            "custom_model": self.custom_model,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SavedModelConfig":
        return cls(
            id=str(data.get("id") or new_id()),
            name=str(data.get("name") or ""),
            provider=Provider.parse(str(data.get("provider", ""))),
            model=str(data.get("model", "")),
            api_key=str(data.get("api_key", "")),
            base_url=data.get("base_url") or None,
            custom_model=data.get("custom_model") or None,
        )


@dataclass(frozen=True)
class ReferenceExample:
    """User-approved original/rewrite pair steering one category's style."""

    category: Category
    original: str
    optimized: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "original": self.original,
            "optimized": self.optimized,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReferenceExample":
        return cls(
            category=Category.coerce(data.get("category")),
            original=str(data.get("original", "")),
            optimized=str(data.get("optimized", "")),
        )


@dataclass(frozen=True)
class HistoryRecord:
    """Immutable snapshot of one applied (or attempted) rewrite."""

    element_id: str
    element_name: str
    original: str
    optimized: str
    category: Category
    timestamp: float = field(default_factory=time.time)
    applied: bool = True
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryRecord":
        return cls(
            id=str(data.get("id") or new_id()),
            element_id=str(data.get("element_id", "")),
            element_name=str(data.get("element_name", "")),
            original=str(data.get("original", "")),
            optimized=str(data.get("optimized", "")),
            category=Category.coerce(data.get("category")),
            timestamp=float(data.get("timestamp", 0.0)),
            applied=bool(data.get("applied", True)),
        )


@dataclass
class Settings:
    """Aggregate root persisted as a single document."""

    active_agent_id: Optional[str] = BUILTIN_AGENT_ID
    agents: list[AgentConfig] = field(default_factory=lambda: [builtin_agent()])
    active_model_id: Optional[str] = None
    saved_models: list[SavedModelConfig] = field(default_factory=list)
    global_brand_terms: list[BrandTerm] = field(default_factory=list)
    global_rules: list[OptimizationRule] = field(default_factory=list)
    reference_examples: dict[Category, ReferenceExample] = field(default_factory=dict)
    history_limit: int = DEFAULT_HISTORY_LIMIT
    schema_version: int = SCHEMA_VERSION

    def find_agent(self, agent_id: Optional[str]) -> Optional[AgentConfig]:
        return next((agent for agent in self.agents if agent.id == agent_id), None)

    def find_model(self, model_id: Optional[str]) -> Optional[SavedModelConfig]:
        return next((model for model in self.saved_models if model.id == model_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "active_agent_id": self.active_agent_id,
            "agents": [agent.to_dict() for agent in self.agents],
            "active_model_id": self.active_model_id,
            "saved_models": [model.to_dict() for model in self.saved_models],
            "global_brand_terms": [term.to_dict() for term in self.global_brand_terms],
            "global_rules": [rule.to_dict() for rule in self.global_rules],
            "reference_examples": {
                category.value: example.to_dict()
                for category, example in self.reference_examples.items()
            },
            "history_limit": self.history_limit,
        }


@dataclass(frozen=True)
class ChatTurn:
    """One message of a local refinement conversation."""

    role: str
    content: str

    def to_message(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch entry; failed entries keep the original text."""

    original: str
    optimized: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
