from __future__ import annotations

from copytune.core.classifier import (
    UNKNOWN_CONTEXT,
    category_label,
    category_tips,
    classify,
    context_names,
    derive_context_path,
)
from copytune.core.models import AncestorRef, Category


def test_context_match_wins_over_content() -> None:
    assert classify("Cancel", ["submit-btn"]) == Category.BUTTON
    assert classify("确定", ["title-frame"]) == Category.TITLE


def test_content_match_when_context_is_silent() -> None:
    assert classify("请输入手机号", ["Text", "Frame 1"]) == Category.PLACEHOLDER
    assert classify("保存成功", ["Text"]) == Category.FEEDBACK
    assert classify("submit", ["Text"]) == Category.BUTTON


def test_font_size_fallback() -> None:
    names = ["Text", "Frame 1"]
    assert classify("随便写的文字", names, 30) == Category.TITLE
    assert classify("随便写的文字", names, 24) == Category.TITLE
    assert classify("随便写的文字", names, 10) == Category.DESCRIPTION
    assert classify("随便写的文字", names, 12) == Category.DESCRIPTION
    assert classify("随便写的文字", names, 16) == Category.GENERAL


def test_mixed_font_size_is_ignored() -> None:
    assert classify("随便写的文字", ["Text"], "mixed") == Category.GENERAL
    assert classify("随便写的文字", ["Text"], None) == Category.GENERAL
    assert classify("随便写的文字", ["Text"], True) == Category.GENERAL


def test_context_match_is_case_insensitive() -> None:
    assert classify("hello", ["Primary BUTTON"]) == Category.BUTTON
    assert classify("hello", ["H2"]) == Category.TITLE


def test_heading_level_names_must_match_whole_context() -> None:
    assert classify("hello", ["Section", "H2"]) == Category.GENERAL
    assert classify("hello", ["card-h3"]) == Category.GENERAL
    assert classify("hello", ["h7"]) == Category.GENERAL


def test_exact_content_patterns_see_surrounding_whitespace() -> None:
    assert classify("确定", ["Text"]) == Category.BUTTON
    assert classify(" 确定 ", ["Text"]) == Category.GENERAL


def test_classification_is_deterministic() -> None:
    results = {classify("了解更多", ["Card", "Frame"], 14) for _ in range(20)}
    assert results == {Category.BUTTON}


def test_context_names_caps_at_five() -> None:
    ancestors = [AncestorRef(f"Frame {i}", "FRAME") for i in range(10)]
    names = context_names("Label", ancestors)
    assert names == ["Label", "Frame 0", "Frame 1", "Frame 2", "Frame 3"]


def test_context_path_is_root_to_leaf_over_structural_ancestors() -> None:
    ancestors = (
        AncestorRef("Card", "INSTANCE"),
        AncestorRef("Group 3", "GROUP"),
        AncestorRef("Login", "FRAME"),
        AncestorRef("Page", "FRAME"),
    )
    assert derive_context_path(ancestors) == "Login > Card"


def test_context_path_unknown_when_no_structural_ancestor() -> None:
    assert derive_context_path(()) == UNKNOWN_CONTEXT
    assert derive_context_path((AncestorRef("Group", "GROUP"),)) == UNKNOWN_CONTEXT


def test_every_category_has_label_and_tips() -> None:
    for category in Category:
        assert category_label(category)
        assert len(category_tips(category)) == 4
