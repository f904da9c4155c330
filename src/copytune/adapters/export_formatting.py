"""Export formatting for scanned and rewritten items.

Keeping every format here prevents drift between the CLI and the review
panel, which both offer the same exports.
"""

from __future__ import annotations

import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from copytune.core.classifier import category_label
from copytune.core.models import Category, TextItem

EXPORT_FORMATS = ("json", "csv", "markdown")
FILE_EXTENSIONS = {"json": "json", "csv": "csv", "markdown": "md"}

CSV_HEADERS = ["ID", "节点名称", "分类", "上下文", "原始文本", "优化后文本", "是否已应用"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_export_data(
    items: Sequence[TextItem],
    project_name: str,
    exported_at: Optional[datetime] = None,
) -> dict[str, Any]:
    exported_at = exported_at or _now()
    return {
        "project_name": project_name,
        "export_time": exported_at.isoformat(),
        "total_texts": len(items),
        "optimized_texts": sum(1 for item in items if item.optimized),
        "texts": [item.to_dict() for item in items],
    }


def _format_json(items: Sequence[TextItem], project_name: str, exported_at: Optional[datetime]) -> str:
    return json.dumps(build_export_data(items, project_name, exported_at), ensure_ascii=False, indent=2)


def _format_csv(items: Sequence[TextItem]) -> str:
    buffer = io.StringIO()
    # Embedded delimiters, quotes and newlines are quoted per RFC 4180.
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for item in items:
        writer.writerow(
            [
                item.id,
                item.name,
                item.category.value,
                item.context,
                item.text,
                item.optimized or "",
                "是" if item.applied else "否",
            ]
        )
    return buffer.getvalue()


def _md_cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\r\n", "<br>").replace("\n", "<br>")


def _format_markdown(items: Sequence[TextItem], project_name: str, exported_at: Optional[datetime]) -> str:
    data = build_export_data(items, project_name, exported_at)
    timestamp = datetime.fromisoformat(data["export_time"]).astimezone().strftime("%Y-%m-%d %H:%M:%S")

    lines = [
        f"# {project_name} - 文案优化报告",
        "",
        f"导出时间: {timestamp}",
        "",
        f"总计: {data['total_texts']} 条文本，已优化 {data['optimized_texts']} 条",
        "",
        "---",
        "",
    ]

    # Categories appear in the order they were first seen.
    seen: list[Category] = []
    for item in items:
        if item.category not in seen:
            seen.append(item.category)

    for category in seen:
        grouped = [item for item in items if item.category == category]
        lines.extend(
            [
                f"## {category_label(category)} ({category.value}) - {len(grouped)} 条",
                "",
                "| 上下文 | 原文 | 优化后 | 状态 |",
                "|--------|------|--------|------|",
            ]
        )
        for item in grouped:
            status = "已应用" if item.applied else "-"
            lines.append(
                f"| {_md_cell(item.context)} | {_md_cell(item.text)} | {_md_cell(item.optimized or '-')} | {status} |"
            )
        lines.append("")
    return "\n".join(lines)


def format_export(
    items: Sequence[TextItem],
    mode: str,
    project_name: str = "未命名项目",
    exported_at: Optional[datetime] = None,
) -> str:
    """Return the items rendered in the requested export format."""

    if mode == "json":
        return _format_json(items, project_name, exported_at)
    if mode == "csv":
        return _format_csv(items)
    if mode == "markdown":
        return _format_markdown(items, project_name, exported_at)
    raise ValueError(f"Unsupported export format: {mode}")


def export_filename(project_name: str, mode: str) -> str:
    return f"{project_name}_texts.{FILE_EXTENSIONS[mode]}"
