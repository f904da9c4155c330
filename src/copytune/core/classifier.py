"""Rule-based classification of text elements (core domain).

Classification is layered and first-match-wins:
1) ancestor names (context) against per-category name patterns
2) literal text against per-category content patterns
3) font size heuristic
4) ``general``
"""

from __future__ import annotations

import math
import re
from typing import Iterable, Optional, Sequence

from copytune.core.models import AncestorRef, Category

# Only ancestors of these node types describe a meaningful container.
STRUCTURAL_NODE_TYPES = frozenset({"FRAME", "COMPONENT", "INSTANCE"})
CONTEXT_DEPTH = 3
CONTEXT_SEPARATOR = " > "
UNKNOWN_CONTEXT = "未知位置"
# The element itself plus up to four ancestors feed the context match.
CONTEXT_NAME_LIMIT = 5

TITLE_MIN_FONT_SIZE = 24
DESCRIPTION_MAX_FONT_SIZE = 12


def _compile(patterns: Iterable[str], flags: int = re.IGNORECASE) -> list[re.Pattern]:
    return [re.compile(pattern, flags) for pattern in patterns]


# Dict order follows Category declaration order, which is the match order.
CONTEXT_PATTERNS: dict[Category, list[re.Pattern]] = {
    Category.BUTTON: _compile(["btn", "button", "cta", "action", "submit", "cancel", "confirm"]),
    Category.TITLE: _compile(["title", "header", "heading", "headline", r"^h[1-6]$"]),
    Category.DESCRIPTION: _compile(["desc", "subtitle", "tip", "hint", "caption", "detail"]),
    Category.PLACEHOLDER: _compile(["placeholder", "input", "search", "field", "textarea"]),
    Category.FEEDBACK: _compile(
        ["toast", "error", "success", "warning", "alert", "message", "notification", "snackbar"]
    ),
    Category.LABEL: _compile(["label", "form"]),
    Category.LINK: _compile(["link", "nav", "menu", "anchor", "breadcrumb"]),
}

CONTENT_PATTERNS: dict[Category, list[re.Pattern]] = {
    Category.BUTTON: [
        re.compile(
            r"^(确定|取消|提交|保存|删除|编辑|新增|添加|创建|返回|下一步|上一步|完成|开始|继续|了解更多|立即|马上)$"
        ),
        re.compile(
            r"^(OK|Cancel|Submit|Save|Delete|Edit|Add|Create|Back|Next|Done|Start|Continue)$",
            re.IGNORECASE,
        ),
    ],
    Category.PLACEHOLDER: [
        re.compile(r"^请输入"),
        re.compile(r"^请选择"),
        re.compile(r"^搜索"),
        re.compile(r"^输入.*关键"),
    ],
    Category.FEEDBACK: [
        re.compile(r"成功|失败|错误|警告|提示|注意"),
        re.compile(r"已保存|已删除|已更新|已发送"),
    ],
}

CATEGORY_LABELS: dict[Category, str] = {
    Category.BUTTON: "按钮",
    Category.TITLE: "标题",
    Category.DESCRIPTION: "描述",
    Category.PLACEHOLDER: "占位符",
    Category.FEEDBACK: "反馈提示",
    Category.LABEL: "标签",
    Category.LINK: "链接",
    Category.GENERAL: "通用",
}

CATEGORY_TIPS: dict[Category, list[str]] = {
    Category.BUTTON: ["使用动词开头，如\"立即购买\"", "控制在 2-6 个字以内", "避免使用\"点击\"等冗余词汇", "使用积极的行动词汇"],
    Category.TITLE: ["突出核心信息", "避免过长，控制在 15 字以内", "使用吸引眼球的关键词", "保持简洁有力"],
    Category.DESCRIPTION: ["使用通俗易懂的语言", "站在用户角度描述", "避免专业术语", "提供有价值的信息"],
    Category.PLACEHOLDER: ["使用\"请输入...\"格式", "给出输入示例", "说明输入格式要求", "保持简短"],
    Category.FEEDBACK: ["说明发生了什么", "告诉用户下一步怎么做", "使用友好的语气", "避免技术性错误码"],
    Category.LABEL: ["使用名词形式", "简洁准确", "避免缩写", "保持一致性"],
    Category.LINK: ["使用动宾结构", "明确指向目标", "避免\"点击这里\"", "让用户知道会发生什么"],
    Category.GENERAL: ["保持简洁清晰", "使用用户熟悉的词汇", "避免歧义", "注意语气一致性"],
}


def category_label(category: Category) -> str:
    return CATEGORY_LABELS[category]


def category_tips(category: Category) -> list[str]:
    return list(CATEGORY_TIPS[category])


def _normalize_font_size(font_size: object) -> Optional[float]:
    # Mixed-style text reports a sentinel instead of a number.
    if isinstance(font_size, bool) or not isinstance(font_size, (int, float)):
        return None
    if math.isnan(font_size):
        return None
    return float(font_size)


def classify_by_context(context_names: Sequence[str]) -> Optional[Category]:
    combined = " ".join(context_names).casefold()
    if not combined:
        return None
    for category, patterns in CONTEXT_PATTERNS.items():
        if any(pattern.search(combined) for pattern in patterns):
            return category
    return None


def classify_by_content(text: str) -> Optional[Category]:
    # Exact-match patterns are tested against the raw, unstripped text.
    for category, patterns in CONTENT_PATTERNS.items():
        if any(pattern.search(text) for pattern in patterns):
            return category
    return None


def classify_by_font_size(font_size: object) -> Optional[Category]:
    size = _normalize_font_size(font_size)
    if size is None:
        return None
    if size >= TITLE_MIN_FONT_SIZE:
        return Category.TITLE
    if size <= DESCRIPTION_MAX_FONT_SIZE:
        return Category.DESCRIPTION
    return None


def classify(text: str, context_names: Sequence[str], font_size: object = None) -> Category:
    """Return the category for a text element. Total and deterministic."""

    return (
        classify_by_context(context_names)
        or classify_by_content(text)
        or classify_by_font_size(font_size)
        or Category.GENERAL
    )


def context_names(element_name: str, ancestors: Sequence[AncestorRef]) -> list[str]:
    """Names fed to the context match: the element first, then its ancestors."""

    names = [element_name, *(ancestor.name for ancestor in ancestors)]
    return names[:CONTEXT_NAME_LIMIT]


def derive_context_path(ancestors: Sequence[AncestorRef]) -> str:
    """Render the structural ancestors (root-to-leaf) as a readable path.

    ``ancestors`` is ordered nearest-first and only the first
    ``CONTEXT_DEPTH`` entries are inspected.
    """

    parts = [
        ancestor.name
        for ancestor in ancestors[:CONTEXT_DEPTH]
        if ancestor.node_type.upper() in STRUCTURAL_NODE_TYPES
    ]
    if not parts:
        return UNKNOWN_CONTEXT
    return CONTEXT_SEPARATOR.join(reversed(parts))
