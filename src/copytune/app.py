"""Application entry point for the copytune CLI."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from art import tprint
from rich.console import Console
from rich.table import Table

from copytune import settings
from copytune.adapters.aiohttp_transport import AiohttpTransport
from copytune.adapters.export_formatting import EXPORT_FORMATS, export_filename, format_export
from copytune.adapters.json_document import JsonDocumentHost
from copytune.adapters.sqlite_store import SQLiteKeyValueStore
from copytune.core.channel import HostBridge
from copytune.core.classifier import category_label
from copytune.core.config import BatchConfig, DispatchConfig
from copytune.core.dispatcher import ProviderDispatcher
from copytune.core.errors import CopytuneError
from copytune.core.models import (
    AgentConfig,
    BrandTerm,
    Category,
    OptimizationRule,
    Provider,
    SavedModelConfig,
    TextItem,
)
from copytune.core.providers import MODEL_PRESETS
from copytune.core.session import OptimizationSession
from copytune.core.store import ConfigurationStore

NAME = "COPYTUNE"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)
console = Console()


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def add_secrets(self, secrets: list[str]) -> None:
        merged = set(self._secrets) | {secret for secret in secrets if secret}
        self._secrets = sorted(merged, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


_FORMATTERS: list[_RedactingFormatter] = []


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    names = ["COPYTUNE_API_KEY", *redact_cfg.get("patterns", [])]
    values = [os.getenv(name) for name in names]
    return sorted({value for value in values if value}, key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    level_name = str(config.get("level", "WARNING")).upper()
    level = getattr(logging, level_name, logging.WARNING)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)
    _FORMATTERS.append(formatter)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/copytune.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _redact_model_keys(store: ConfigurationStore) -> None:
    keys = [model.api_key for model in store.settings.saved_models]
    for formatter in _FORMATTERS:
        formatter.add_secrets(keys)


class _Runtime:
    """Wiring shared by every command."""

    def __init__(self) -> None:
        backend = SQLiteKeyValueStore(settings.DB_PATH)
        backend.init_db()
        self.store = ConfigurationStore(backend, settings.HISTORY_LIMIT)
        self.dispatcher = ProviderDispatcher(
            AiohttpTransport(),
            DispatchConfig(
                temperature=settings.TEMPERATURE,
                max_tokens=settings.MAX_TOKENS,
                timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS,
            ),
        )
        self.batch_config = BatchConfig(delay_seconds=settings.BATCH_DELAY_SECONDS)

    async def load(self) -> None:
        await self.store.load()
        if not self.store.settings.saved_models and settings.ENV_API_KEY:
            # Seed the first saved model from the environment once.
            await self.store.add_model(
                SavedModelConfig(
                    provider=Provider.parse(settings.ENV_PROVIDER),
                    model=settings.ENV_MODEL,
                    api_key=settings.ENV_API_KEY,
                    base_url=settings.ENV_BASE_URL or None,
                ),
                activate=True,
            )
            LOGGER.info("Seeded saved model from environment")
        _redact_model_keys(self.store)

    def session(self, host) -> OptimizationSession:
        return OptimizationSession(host, self.store, self.dispatcher, self.batch_config)


def _items_table(items: list[TextItem], title: str) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("id", style="dim")
    table.add_column("category")
    table.add_column("context")
    table.add_column("text")
    table.add_column("optimized")
    table.add_column("applied")
    for item in items:
        table.add_row(
            item.id,
            category_label(item.category),
            item.context,
            item.text,
            item.optimized or "-",
            "yes" if item.applied else "",
        )
    return table


def _write_export(items: list[TextItem], mode: str, project_name: str, output: Optional[str]) -> None:
    content = format_export(items, mode, project_name)
    target = output or export_filename(project_name, mode)
    with open(target, "w", encoding="utf-8") as handle:
        handle.write(content)
    console.print(f"Exported {len(items)} texts to {target}")


def _open_document(args: argparse.Namespace) -> JsonDocumentHost:
    return JsonDocumentHost.from_file(args.document, page=args.page, missing_fonts=args.missing_font or [])


async def _cmd_scan(runtime: _Runtime, args: argparse.Namespace) -> int:
    document = _open_document(args)
    async with HostBridge(document) as host:
        session = runtime.session(host)
        items = await session.scan(args.selection)
    console.print(_items_table(items, f"{document.project_name}: {len(items)} texts"))
    return 0


async def _cmd_export(runtime: _Runtime, args: argparse.Namespace) -> int:
    document = _open_document(args)
    async with HostBridge(document) as host:
        items = await runtime.session(host).scan(args.selection)
    _write_export(items, args.format, document.project_name, args.output)
    return 0


async def _cmd_optimize(runtime: _Runtime, args: argparse.Namespace) -> int:
    await runtime.load()
    document = _open_document(args)
    async with HostBridge(document) as host:
        session = runtime.session(host)
        await session.scan(args.selection)

        if args.id:
            optimized = await session.optimize(args.id)
            console.print(f"{args.id}: {optimized}")
        else:
            category = Category(args.category) if args.category else None

            def on_progress(done: int, total: int) -> None:
                console.print(f"[{done}/{total}]", end="\r")

            report = await session.optimize_all(category, on_progress=on_progress)
            console.print()
            for result in report.failures:
                console.print(f"[red]failed[/red] {result.original!r}: {result.error}")

        if args.apply:
            applied = await session.apply_all()
            console.print(f"Applied {applied} rewrites")

    console.print(_items_table(session.items, document.project_name))
    if args.apply and document.dirty:
        document.save(args.save_as)
    if args.export:
        _write_export(session.items, args.export, document.project_name, args.output)
    return 0


async def _cmd_history(runtime: _Runtime, args: argparse.Namespace) -> int:
    await runtime.load()
    store = runtime.store
    if args.action == "clear":
        await store.clear_history()
        console.print("History cleared")
        return 0
    if args.action == "revert":
        record = next((r for r in store.history if r.id == args.record_id), None)
        if record is None:
            console.print(f"[red]No history record {args.record_id}[/red]")
            return 1
        document = _open_document(args)
        async with HostBridge(document) as host:
            reverted = await runtime.session(host).revert(record)
        if not reverted:
            console.print(f"[red]Could not revert {record.element_id}[/red]")
            return 1
        document.save(args.save_as)
        console.print(f"Reverted {record.element_name}")
        return 0

    table = Table(title=f"History ({len(store.history)}/{store.settings.history_limit})")
    for column in ("id", "element", "category", "original", "optimized"):
        table.add_column(column)
    for record in store.history:
        table.add_row(record.id, record.element_name, category_label(record.category), record.original, record.optimized)
    console.print(table)
    return 0


async def _cmd_models(runtime: _Runtime, args: argparse.Namespace) -> int:
    await runtime.load()
    store = runtime.store
    if args.action == "presets":
        for preset in MODEL_PRESETS:
            console.print(f"{preset.provider.value:<11} {preset.model:<28} {preset.name} - {preset.description}")
        return 0
    if args.action == "add":
        model = SavedModelConfig(
            provider=Provider.parse(args.provider),
            model=args.model,
            api_key=args.api_key or os.getenv("COPYTUNE_API_KEY", ""),
            base_url=args.base_url,
            custom_model=args.custom_model,
            name=args.name or "",
        )
        await store.add_model(model, activate=args.activate)
        _redact_model_keys(store)
        console.print(f"Saved model {model.id} ({model.label})")
        return 0
    if args.action == "use":
        await store.set_active_model(args.model_id)
        return 0
    if args.action == "remove":
        await store.remove_model(args.model_id)
        return 0
    if args.action == "test":
        model = store.settings.find_model(args.model_id) if args.model_id else store.active_model()
        if model is None:
            console.print("[red]No model to test[/red]")
            return 1
        check = await runtime.dispatcher.test_connection(model)
        style = "green" if check.success else "red"
        console.print(f"[{style}]{check.message}[/{style}]")
        return 0 if check.success else 1

    for model in store.settings.saved_models:
        marker = "*" if model.id == store.settings.active_model_id else " "
        console.print(f"{marker} {model.id}  {model.label}  {model.base_url or ''}")
    return 0


async def _cmd_agents(runtime: _Runtime, args: argparse.Namespace) -> int:
    await runtime.load()
    store = runtime.store
    if args.action == "add":
        agent = AgentConfig(name=args.name, description=args.description or "", system_prompt=args.system_prompt or "")
        await store.add_agent(agent)
        console.print(f"Created agent {agent.id}")
        return 0
    if args.action == "use":
        await store.set_active_agent(args.agent_id)
        return 0
    if args.action == "remove":
        await store.delete_agent(args.agent_id)
        return 0
    if args.action == "prompt":
        agent = store.settings.find_agent(args.agent_id)
        if agent is None:
            console.print(f"[red]Unknown agent {args.agent_id}[/red]")
            return 1
        agent.system_prompt = args.system_prompt or ""
        await store.update_agent(agent)
        return 0

    for agent in store.settings.agents:
        marker = "*" if agent.id == store.settings.active_agent_id else " "
        badge = " [builtin]" if agent.builtin else ""
        console.print(f"{marker} {agent.id}  {agent.name}{badge}  {agent.description}")
    return 0


async def _cmd_terms(runtime: _Runtime, args: argparse.Namespace) -> int:
    await runtime.load()
    store = runtime.store
    if args.action == "add":
        await store.add_global_brand_term(BrandTerm.create(args.wrong, args.correct))
        return 0
    if args.action == "remove":
        await store.remove_global_brand_term(args.term_id)
        return 0
    for term in store.settings.global_brand_terms:
        state = "on " if term.enabled else "off"
        console.print(f"{state} {term.id}  {term.wrong} -> {term.correct}")
    return 0


async def _cmd_rules(runtime: _Runtime, args: argparse.Namespace) -> int:
    await runtime.load()
    store = runtime.store
    if args.action == "add":
        category = Category(args.category) if args.category else None
        await store.add_global_rule(OptimizationRule(content=args.content, category=category))
        return 0
    if args.action == "remove":
        await store.remove_global_rule(args.rule_id)
        return 0
    for rule in store.settings.global_rules:
        scope = rule.category.value if rule.category else "all"
        console.print(f"{rule.id}  [{scope}]  {rule.content}")
    return 0


def _review(runtime: _Runtime, args: argparse.Namespace) -> int:
    from copytune.frontend.review import ReviewApp

    asyncio.run(runtime.load())
    document = _open_document(args)
    ReviewApp(document, runtime.session(document)).run()
    return 0


def _add_document_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("document", help="Path to the exported design document (JSON)")
    parser.add_argument("--page", help="Page name (defaults to the first page)")
    parser.add_argument("--missing-font", action="append", help="Font family that cannot be loaded")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="copytune")
    subparsers = parser.add_subparsers(dest="command", required=True)
    categories = [category.value for category in Category]

    scan = subparsers.add_parser("scan", help="Scan and classify text elements")
    _add_document_args(scan)
    scan.add_argument("--selection", nargs="*", help="Only scan below these node ids")

    optimize = subparsers.add_parser("optimize", help="Rewrite one item or the whole document")
    _add_document_args(optimize)
    optimize.add_argument("--selection", nargs="*")
    optimize.add_argument("--id", help="Only rewrite this node id")
    optimize.add_argument("--category", choices=categories)
    optimize.add_argument("--apply", action="store_true", help="Write rewrites into the document")
    optimize.add_argument("--save-as", help="Save the edited document elsewhere")
    optimize.add_argument("--export", choices=EXPORT_FORMATS)
    optimize.add_argument("--output", help="Export file path")

    history = subparsers.add_parser("history", help="Show, clear or revert history")
    history_sub = history.add_subparsers(dest="action")
    history_sub.add_parser("list")
    history_sub.add_parser("clear")
    revert = history_sub.add_parser("revert")
    revert.add_argument("record_id")
    _add_document_args(revert)
    revert.add_argument("--save-as")

    models = subparsers.add_parser("models", help="Manage saved models")
    models_sub = models.add_subparsers(dest="action")
    models_sub.add_parser("list")
    models_sub.add_parser("presets")
    add_model = models_sub.add_parser("add")
    add_model.add_argument("provider", choices=[provider.value for provider in Provider])
    add_model.add_argument("model")
    add_model.add_argument("--api-key", help="Defaults to COPYTUNE_API_KEY")
    add_model.add_argument("--base-url")
    add_model.add_argument("--custom-model")
    add_model.add_argument("--name")
    add_model.add_argument("--activate", action="store_true")
    for action in ("use", "remove"):
        models_sub.add_parser(action).add_argument("model_id")
    models_sub.add_parser("test").add_argument("model_id", nargs="?")

    agents = subparsers.add_parser("agents", help="Manage agents")
    agents_sub = agents.add_subparsers(dest="action")
    agents_sub.add_parser("list")
    add_agent = agents_sub.add_parser("add")
    add_agent.add_argument("name")
    add_agent.add_argument("--description")
    add_agent.add_argument("--system-prompt")
    for action in ("use", "remove"):
        agents_sub.add_parser(action).add_argument("agent_id")
    prompt = agents_sub.add_parser("prompt", help="Set an agent's system prompt override")
    prompt.add_argument("agent_id")
    prompt.add_argument("system_prompt", nargs="?")

    terms = subparsers.add_parser("terms", help="Manage global brand terms")
    terms_sub = terms.add_subparsers(dest="action")
    terms_sub.add_parser("list")
    add_term = terms_sub.add_parser("add")
    add_term.add_argument("wrong")
    add_term.add_argument("correct")
    terms_sub.add_parser("remove").add_argument("term_id")

    rules = subparsers.add_parser("rules", help="Manage global rules")
    rules_sub = rules.add_subparsers(dest="action")
    rules_sub.add_parser("list")
    add_rule = rules_sub.add_parser("add")
    add_rule.add_argument("content")
    add_rule.add_argument("--category", choices=categories)
    rules_sub.add_parser("remove").add_argument("rule_id")

    export = subparsers.add_parser("export", help="Export scanned texts")
    _add_document_args(export)
    export.add_argument("--selection", nargs="*")
    export.add_argument("--format", choices=EXPORT_FORMATS, default="json")
    export.add_argument("--output", help="Export file path")

    review = subparsers.add_parser("review", help="Open the review panel")
    _add_document_args(review)

    return parser


_COMMANDS: dict[str, Any] = {
    "scan": _cmd_scan,
    "export": _cmd_export,
    "optimize": _cmd_optimize,
    "history": _cmd_history,
    "models": _cmd_models,
    "agents": _cmd_agents,
    "terms": _cmd_terms,
    "rules": _cmd_rules,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _print_banner()
    _configure_logging()

    try:
        runtime = _Runtime()
        if args.command == "review":
            return _review(runtime, args)
        return asyncio.run(_COMMANDS[args.command](runtime, args))
    except (CopytuneError, KeyError) as exc:
        console.print(f"[red]{exc}[/red]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
