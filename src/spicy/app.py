"""Command-line bootstrap for the Spicy chat core."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.backend import OpenAIChatBackend
from .chat.assembler import ERROR_PREFIX
from .chat.controller import ChatSessionController
from .chat.message_model import ChatMessage, to_chat_messages
from .chat.session_cache import SessionCache
from .services.history import FileSessionGateway, HistoryError
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils
from .utils.file_io import list_documents
from .utils.telemetry import TelemetryClient

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, force: bool = False, console: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=console, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except Exception as exc:  # pragma: no cover - defensive path
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_controller(
    settings: Settings,
    *,
    telemetry: TelemetryClient | None = None,
) -> tuple[ChatSessionController, OpenAIChatBackend]:
    """Wire the backend, session gateway, and cache described by ``settings``."""

    if not settings.working_directory:
        raise ValueError("A working directory is required to build the chat controller.")
    backend = OpenAIChatBackend.from_settings(settings)
    controller = ChatSessionController(
        backend,
        FileSessionGateway(settings.working_directory),
        cache=SessionCache(settings.session_cache_capacity),
        title_max_chars=settings.session_title_chars,
        telemetry=telemetry,
    )
    return controller, backend


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `spicy` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = args.debug or _env_flag("SPICY_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("SPICY_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    if args.working_dir:
        settings = replace(settings, working_directory=str(Path(args.working_dir).expanduser()))
    elif not settings.working_directory:
        settings = replace(settings, working_directory=str(Path.cwd()))

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command is None:
        parser.print_help()
        return 2

    telemetry = TelemetryClient(
        enabled=settings.telemetry_enabled,
        path=settings_store.path.parent / "telemetry.jsonl",
    )
    try:
        return asyncio.run(_run_command(args, settings, telemetry))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130
    finally:
        telemetry.flush()


async def _run_command(args: argparse.Namespace, settings: Settings, telemetry: TelemetryClient) -> int:
    root = Path(settings.working_directory or ".")
    if args.command == "files":
        for name in list_documents(root):
            print(name)
        return 0

    gateway = FileSessionGateway(root)
    if args.command == "sessions":
        for meta in await gateway.list_sessions(args.document):
            print(f"{meta.id}\t{meta.message_count}\t{meta.title}")
        return 0

    if args.command == "show":
        try:
            data = await gateway.load_session(args.document, args.session_id)
        except HistoryError as exc:
            print(f"Session {args.session_id} could not be loaded: {exc}", file=sys.stderr)
            return 1
        _print_transcript(to_chat_messages(data.messages))
        return 0

    controller, backend = build_controller(settings, telemetry=telemetry)
    try:
        await controller.select_document(args.document)
        if args.new:
            controller.new_session()
        elif args.session and not await controller.switch_session(args.session):
            print(f"Session {args.session} could not be loaded.", file=sys.stderr)
            return 1

        printer = _StreamPrinter()
        controller.store.add_listener(printer)
        try:
            placeholder_id = await controller.send_message(args.message)
        finally:
            controller.store.remove_listener(printer)
        printer.finish()
        reply = controller.store.get(placeholder_id)
        if controller.active_session_id:
            _LOGGER.debug("Conversation stored as session %s", controller.active_session_id)
        return 1 if reply is not None and reply.content.startswith(ERROR_PREFIX) else 0
    finally:
        await backend.aclose()


class _StreamPrinter:
    """Echo the newest assistant turn to stdout as its content grows."""

    def __init__(self, stream: TextIO | None = None, thinking_stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._thinking_stream = thinking_stream or sys.stderr
        self._content = ""
        self._thinking = ""

    def __call__(self, messages: List[ChatMessage]) -> None:
        if not messages or messages[-1].role != "assistant":
            return
        current = messages[-1]
        thinking = current.thinking or ""
        if thinking.startswith(self._thinking) and len(thinking) > len(self._thinking):
            self._thinking_stream.write(thinking[len(self._thinking) :])
            self._thinking_stream.flush()
        self._thinking = thinking

        content = current.content
        if content.startswith(self._content):
            self._stream.write(content[len(self._content) :])
        else:
            # A terminal explanation replaced the streamed text.
            self._stream.write(("\n" if self._content else "") + content)
        self._stream.flush()
        self._content = content

    def finish(self) -> None:
        if self._thinking:
            self._thinking_stream.write("\n")
        self._stream.write("\n")
        self._stream.flush()


def _print_transcript(messages: Sequence[ChatMessage], stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    for message in messages:
        destination.write(f"[{message.role}] {message.content}\n")
        for change in message.changes or []:
            label = f"{change.component}: " if change.component else ""
            destination.write(f"  * {label}{change.description} ({change.filename})\n")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spicy",
        description="Chat about LTspice schematics with per-document session history.",
    )
    parser.add_argument(
        "--working-dir",
        metavar="DIR",
        help="Directory holding the schematics (defaults to the configured one or the CWD).",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.spicy/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("files", help="List schematics in the working directory.")

    sessions = commands.add_parser("sessions", help="List stored sessions for a document.")
    sessions.add_argument("document")

    show = commands.add_parser("show", help="Print a stored session transcript.")
    show.add_argument("document")
    show.add_argument("session_id")

    chat = commands.add_parser("chat", help="Send one message about a document.")
    chat.add_argument("document")
    chat.add_argument("message")
    group = chat.add_mutually_exclusive_group()
    group.add_argument("--session", metavar="ID", help="Continue a specific stored session.")
    group.add_argument("--new", action="store_true", help="Start a fresh session.")
    return parser


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    normalized = raw_value.strip()
    optional = type(None) in get_args(annotation)
    if optional and normalized.lower() in {"none", "null"}:
        return None

    target = _resolve_annotation(annotation)
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    if get_origin(annotation) is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return annotation
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("SPICY_"))
