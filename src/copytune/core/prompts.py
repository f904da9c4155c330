"""Prompt assembly (core domain).

All behavioural instructions live in the system prompt. The user prompt only
carries the text to transform, so a provider's trimmed reply can be used as
the rewrite without any further parsing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from copytune.core.models import BrandTerm, Category, OptimizationRule, ReferenceExample

CATEGORY_PROMPTS: dict[Category, str] = {
    Category.BUTTON: "这是一个按钮文案。要求：简短有力，最好以动词开头，不超过8个字。",
    Category.TITLE: "这是一个标题文案。要求：清晰准确，突出核心信息，吸引注意力。",
    Category.DESCRIPTION: "这是一个描述/说明文案。要求：通俗易懂，站在用户视角，简洁明了。",
    Category.PLACEHOLDER: "这是一个输入框占位符。要求：简洁引导，如\"请输入...\"格式，帮助用户理解输入内容。",
    Category.FEEDBACK: "这是一个反馈/提示文案。要求：友好、有帮助、提供可操作的建议。",
    Category.LABEL: "这是一个标签/表单项名称。要求：简洁准确，使用名词形式。",
    Category.LINK: "这是一个链接/导航文案。要求：明确指向，使用动宾结构，让用户知道点击后会发生什么。",
    Category.GENERAL: "这是一个通用界面文案。要求：简洁清晰，符合界面设计规范。",
}

DEFAULT_PERSONA = "你是一个专业的 UI 文案优化专家，擅长优化各类界面文案，使其更加专业、清晰、用户友好。"
CHAT_PERSONA = "你是一个专业的 UI 文案优化专家，正在和设计师一起反复打磨一条界面文案。"

OUTPUT_REQUIREMENTS = [
    "保持原意，只优化表达方式",
    "符合中文互联网产品的文案风格",
    "遵循品牌用语规范",
    "只返回优化后的文案，不要任何解释、前缀或后缀",
]
REFERENCE_REQUIREMENT = "模仿参考示例的句式、语气和长度"

USER_PROMPT_TEMPLATE = "请优化以下文案：\n\n{text}"


@dataclass(frozen=True)
class PromptPair:
    system: str
    user: str


def enabled_terms(brand_terms: Iterable[BrandTerm]) -> list[BrandTerm]:
    return [term for term in brand_terms if term.enabled]


def applicable_rules(rules: Iterable[OptimizationRule], category: Category) -> list[OptimizationRule]:
    return [rule for rule in rules if rule.applies_to(category)]


def format_brand_term(term: BrandTerm) -> str:
    return f"- \"{term.wrong}\" 应写为 \"{term.correct}\""


def _brand_terms_section(brand_terms: Sequence[BrandTerm]) -> Optional[str]:
    terms = enabled_terms(brand_terms)
    if not terms:
        return None
    return "品牌词库规范：\n" + "\n".join(format_brand_term(term) for term in terms)


def _rules_section(rules: Sequence[OptimizationRule], category: Category) -> Optional[str]:
    selected = applicable_rules(rules, category)
    if not selected:
        return None
    return "额外优化规则：\n" + "\n".join(f"- {rule.content}" for rule in selected)


def _reference_section(reference: Optional[ReferenceExample]) -> Optional[str]:
    if reference is None:
        return None
    return "\n".join(
        [
            "参考示例（请模仿这种风格）：",
            f"原文：{reference.original}",
            f"优化后：{reference.optimized}",
        ]
    )


def _requirements_section(with_reference: bool) -> str:
    requirements = list(OUTPUT_REQUIREMENTS)
    if with_reference:
        requirements.insert(-1, REFERENCE_REQUIREMENT)
    lines = [f"{index}. {item}" for index, item in enumerate(requirements, start=1)]
    return "重要要求：\n" + "\n".join(lines)


def build_task_context(
    category: Category,
    context_path: str,
    brand_terms: Sequence[BrandTerm] = (),
    rules: Sequence[OptimizationRule] = (),
    reference: Optional[ReferenceExample] = None,
) -> str:
    """Return the task block that is always part of the system prompt."""

    sections = [
        CATEGORY_PROMPTS[category],
        f"上下文场景：{context_path}",
        _brand_terms_section(brand_terms),
        _rules_section(rules, category),
        _reference_section(reference),
        _requirements_section(with_reference=reference is not None),
    ]
    return "\n\n".join(section for section in sections if section)


def build_prompt(
    text: str,
    category: Category,
    context_path: str,
    brand_terms: Sequence[BrandTerm] = (),
    rules: Sequence[OptimizationRule] = (),
    custom_system_prompt: Optional[str] = None,
    reference: Optional[ReferenceExample] = None,
) -> PromptPair:
    """Assemble the system/user prompt pair for one rewrite.

    A custom system prompt replaces only the default persona; the task
    context block is appended either way. The reference example, when given,
    must belong to ``category``.
    """

    task_block = build_task_context(category, context_path, brand_terms, rules, reference)
    if custom_system_prompt and custom_system_prompt.strip():
        preamble = custom_system_prompt
    else:
        preamble = DEFAULT_PERSONA
    return PromptPair(
        system=f"{preamble}\n\n{task_block}",
        user=USER_PROMPT_TEMPLATE.format(text=text),
    )


def build_chat_system_prompt(
    category: Category,
    context_path: str,
    brand_terms: Sequence[BrandTerm] = (),
    rules: Sequence[OptimizationRule] = (),
) -> str:
    """Compact system prompt scoped to one refinement conversation."""

    lines = [CHAT_PERSONA, CATEGORY_PROMPTS[category], f"上下文场景：{context_path}"]
    terms = enabled_terms(brand_terms)
    if terms:
        lines.append("品牌用语：" + "；".join(f"{t.wrong}→{t.correct}" for t in terms))
    selected = applicable_rules(rules, category)
    if selected:
        lines.append("规则：" + "；".join(rule.content for rule in selected))
    lines.append("每次只返回修改后的文案本身，不要解释。")
    return "\n".join(lines)
