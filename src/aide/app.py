"""Command line entry point: chat with a model, index a folder, or search it."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO

from .ai.ai_types import FinishReason
from .ai.errors import AideError
from .ai.orchestration.chat_orchestrator import ChatOrchestrator
from .chat.message_model import AgentMode, MessageRole, TextContent, ToolCallContent
from .context.context_service import ContextService
from .context.indexer import ContextIndexer
from .context.search import SearchEngine
from .context.workspace import LocalWorkspace
from .core.cancellation import CancellationTokenSource
from .services.agent_store import InMemoryAgentStore
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_SECRET_FIELDS = {"api_key"}


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Log to the rotating file; the console only receives warnings unless debugging."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, console_level=level if debug else logging.WARNING, force=force)
    _LOGGER.info("Logging to %s (level=%s)", log_path, logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the ``aide`` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("AIDE_DEBUG")
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("AIDE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _parse_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0
    if settings.debug_logging and not debug:
        logging_utils.set_file_level(logging.DEBUG)

    handler = getattr(args, "handler", None)
    if handler is None:
        print("No command given; try 'aide chat --help'.", file=sys.stderr)
        return 2
    try:
        return asyncio.run(handler(args, settings))
    except KeyboardInterrupt:
        return 130
    except AideError as exc:
        _LOGGER.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


async def _run_chat(args: argparse.Namespace, settings: Settings, *, stream: TextIO | None = None) -> int:
    out = stream or sys.stdout
    workspace = LocalWorkspace([args.workspace], default_exclude=settings.indexing.exclude_patterns)
    async with ChatOrchestrator.from_settings(
        settings, workspace=workspace, agent_store=InMemoryAgentStore()
    ) as orchestrator:
        indexer = ContextIndexer(
            workspace, settings=settings.indexing, embeddings=orchestrator.active_embedding_provider
        )
        search = SearchEngine(
            workspace,
            indexer,
            embeddings=orchestrator.active_embedding_provider,
            exclude=settings.indexing.exclude_patterns,
        )
        context = ContextService(workspace, search)

        agent = await orchestrator.create_agent(mode=AgentMode(args.mode), model=args.model)
        if not agent.model:
            print("error: no model available; configure a provider or pass --model", file=sys.stderr)
            return 1

        source = CancellationTokenSource()
        attachments = await context.resolve_text(args.prompt, source.token)
        for attachment in attachments:
            out.write(f"[attached {attachment.kind}: {attachment.name}]\n")

        finish: FinishReason | None = None
        try:
            async for chunk in orchestrator.send_message_stream(agent.id, args.prompt, attachments, source.token):
                if isinstance(chunk.delta, TextContent):
                    out.write(chunk.delta.text)
                    out.flush()
                elif isinstance(chunk.delta, ToolCallContent):
                    out.write(f"\n[tool call {chunk.delta.name} {json.dumps(chunk.delta.arguments)}]\n")
                if chunk.finish_reason is not None:
                    finish = chunk.finish_reason
        except asyncio.CancelledError:
            source.cancel()
            raise
        out.write("\n")

        if finish is FinishReason.TOOL_CALLS:
            for message in agent.messages:
                if message.role is not MessageRole.TOOL:
                    continue
                for result in message.tool_results:
                    status = "error" if result.is_error else "ok"
                    out.write(f"[tool result {result.call_id} {status}] {json.dumps(result.result, default=str)}\n")
        usage = agent.messages[-1].usage if agent.messages else None
        if usage is not None:
            _LOGGER.info("Turn usage: %s input / %s output tokens", usage.input_tokens, usage.output_tokens)
    return 0


async def _run_index(args: argparse.Namespace, settings: Settings, *, stream: TextIO | None = None) -> int:
    out = stream or sys.stdout
    workspace = LocalWorkspace([args.folder], default_exclude=settings.indexing.exclude_patterns)
    async with ChatOrchestrator.from_settings(settings, agent_store=InMemoryAgentStore()) as orchestrator:
        indexer = ContextIndexer(
            workspace, settings=settings.indexing, embeddings=orchestrator.active_embedding_provider
        )
        status = await indexer.index_workspace()
        embedded = sum(1 for entry in indexer.entries() if entry.embedding is not None)
    json.dump({**asdict(status), "embedded": embedded}, out, indent=2)
    out.write("\n")
    return 0


async def _run_search(args: argparse.Namespace, settings: Settings, *, stream: TextIO | None = None) -> int:
    out = stream or sys.stdout
    workspace = LocalWorkspace([args.folder], default_exclude=settings.indexing.exclude_patterns)
    async with ChatOrchestrator.from_settings(settings, agent_store=InMemoryAgentStore()) as orchestrator:
        provider = orchestrator.active_embedding_provider
        indexer = ContextIndexer(workspace, settings=settings.indexing, embeddings=provider)
        engine = SearchEngine(workspace, indexer, embeddings=provider, exclude=settings.indexing.exclude_patterns)
        if args.kind == "semantic":
            if provider() is not None:
                await indexer.index_workspace()
            results = await engine.semantic_search(args.query, args.limit)
        elif args.kind == "symbol":
            results = await engine.symbol_search(args.query, args.limit)
        else:
            results = await engine.lexical_search(args.query, args.limit)
    for result in results:
        location = f"{result.path}:{result.line}" if result.line else str(result.path)
        preview = result.content.strip().splitlines()[0] if result.content.strip() else ""
        out.write(f"{result.score:.3f}  {location}  {preview[:120]}\n")
    if not results:
        out.write("No results.\n")
    return 0


async def _run_models(args: argparse.Namespace, settings: Settings, *, stream: TextIO | None = None) -> int:
    out = stream or sys.stdout
    async with ChatOrchestrator.from_settings(settings, agent_store=InMemoryAgentStore()) as orchestrator:
        models = await orchestrator.get_available_models()
    for model in models:
        flags = [name for name in ("vision", "tools") if getattr(model.capabilities, name)]
        out.write(f"{model.id}\t{model.context_length}\t{','.join(flags)}\n")
    return 0


# -----------------------------------------------------------------------------
# Argument handling
# -----------------------------------------------------------------------------


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="aide",
        description="Chat with language models about a codebase, or index and search it.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument("--settings-path", metavar="PATH", help="Override the default ~/.aide/settings.json path.")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override a setting for this run, e.g. openai.base_url=... (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging on the console.")
    commands = parser.add_subparsers(dest="command")

    chat = commands.add_parser("chat", help="Stream one prompt through a new agent.")
    chat.add_argument("prompt", help="Message text; @file:name style mentions are resolved as attachments.")
    chat.add_argument("--model", help="Model id such as openai/gpt-4o (defaults to the configured default).")
    chat.add_argument("--mode", choices=[mode.value for mode in AgentMode], default=AgentMode.AGENT.value)
    chat.add_argument("--workspace", default=".", help="Workspace folder for tools and mentions.")
    chat.set_defaults(handler=_run_chat)

    index = commands.add_parser("index", help="Index a folder and print the index status.")
    index.add_argument("folder", nargs="?", default=".")
    index.set_defaults(handler=_run_index)

    search = commands.add_parser("search", help="Search a folder.")
    search.add_argument("query")
    search.add_argument("--folder", default=".")
    search.add_argument("--kind", choices=("semantic", "lexical", "symbol"), default="semantic")
    search.add_argument("--limit", type=int, default=10)
    search.set_defaults(handler=_run_search)

    models = commands.add_parser("models", help="List models offered by the configured providers.")
    models.set_defaults(handler=_run_models)
    return parser.parse_args(argv)


def _parse_overrides(items: Sequence[str]) -> Dict[str, str]:
    overrides: Dict[str, str] = {}
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        overrides[key] = raw_value.strip()
    return overrides


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = _redact(asdict(settings))
    log_path = logging_utils.get_log_path()
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("AIDE_")),
        "log_path": str(log_path) if log_path is not None else None,
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: redact_secret(item) if key in _SECRET_FIELDS and isinstance(item, str) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


__all__ = ["configure_logging", "load_settings", "main"]
