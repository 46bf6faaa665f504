"""Command-line entry point: run one prompt through the tool loop and print the events.

Events go to stdout as JSON lines (or SSE frames with ``--format sse``); logs
go to stderr and the rotating log file.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Mapping,
    NoReturn,
    Optional,
    Sequence,
    TextIO,
    get_args,
    get_origin,
    get_type_hints,
)

from .ai.client import AIClient
from .ai.orchestration import (
    SSE_DONE_FRAME,
    ChatEventLogger,
    ChatOrchestrator,
    ConversationMessage,
    ErrorEvent,
    OrchestrationEvent,
    ToolProvider,
    ToolProviderRegistry,
    format_sse,
)
from .services.settings import Settings, SettingsStore, redact_secret, validate_settings
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_ENV_PREFIX = "CHATRELAY_"
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})
_NULL_VALUES = frozenset({"none", "null"})
_OUTPUT_FORMATS = ("jsonl", "sse")

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Route logs to the rotating file and stderr at INFO, or DEBUG when ``debug``."""

    level = logging.DEBUG if debug else logging.INFO
    log_path = logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging to %s at %s", log_path, logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Resolve settings through ``store``; an unreadable file yields defaults."""

    store = store or SettingsStore(path)
    try:
        return store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Using default settings, %s could not be read: %s", store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `chatrelay` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("CHATRELAY_DEBUG")
    configure_logging(debug)

    raw_path = args.settings_path or os.environ.get("CHATRELAY_SETTINGS_PATH")
    store = SettingsStore(Path(raw_path).expanduser() if raw_path else None)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        _fail(f"Invalid --set override: {exc}", EXIT_USAGE, exc)
    settings = load_settings(store=store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return

    problems = validate_settings(settings)
    if problems:
        _fail("\n".join(f"Invalid setting: {problem}" for problem in problems), EXIT_USAGE)

    if settings.debug_logging and not debug:
        debug = True
        configure_logging(True, force=True)

    try:
        providers = [_load_provider(target) for target in args.providers]
    except (ImportError, AttributeError, TypeError, ValueError) as exc:
        _fail(f"Invalid --provider: {exc}", EXIT_USAGE, exc)

    if args.health:
        healthy = asyncio.run(_run_health(settings, providers, debug_logging=debug))
        raise SystemExit(EXIT_OK if healthy else EXIT_FAILED)

    prompt = args.prompt
    if prompt is None and not sys.stdin.isatty():
        prompt = sys.stdin.read().strip()
    if not prompt:
        _fail("A prompt is required (positional argument or stdin).", EXIT_USAGE)

    try:
        ok = asyncio.run(_run_chat(settings, providers, prompt, output_format=args.format, debug_logging=debug))
    except KeyboardInterrupt:  # pragma: no cover - interactive interrupt
        _LOGGER.info("Interrupted; stopping.")
        raise SystemExit(EXIT_INTERRUPTED)
    if not ok:
        raise SystemExit(EXIT_FAILED)


def _fail(message: str, code: int, cause: BaseException | None = None) -> NoReturn:
    print(message, file=sys.stderr)
    raise SystemExit(code) from cause


async def _run_chat(
    settings: Settings,
    providers: Sequence[ToolProvider],
    prompt: str,
    *,
    output_format: str = "jsonl",
    debug_logging: bool = False,
    stream: TextIO | None = None,
    client: AIClient | None = None,
) -> bool:
    """Run one orchestration for ``prompt`` and print every event.

    Returns:
        False when the run ended with an error event.
    """

    out = stream or sys.stdout
    registry = ToolProviderRegistry(providers)
    tools = await registry.refresh()
    ai_client = client or AIClient(settings.to_client_settings(debug_logging=debug_logging))
    orchestrator = ChatOrchestrator(
        ai_client,
        registry,
        config=settings.to_orchestrator_config(),
        event_logger=ChatEventLogger(enabled=settings.debug_event_logging),
    )
    failed = False
    try:
        async for event in orchestrator.run([ConversationMessage.user(prompt)], tools):
            failed = failed or isinstance(event, ErrorEvent)
            _write_event(event, output_format, out)
        if output_format == "sse":
            out.write(SSE_DONE_FRAME)
            out.flush()
    finally:
        await ai_client.aclose()
    return not failed


async def _run_health(
    settings: Settings,
    providers: Sequence[ToolProvider],
    *,
    debug_logging: bool = False,
    stream: TextIO | None = None,
    client: AIClient | None = None,
) -> bool:
    """Print LLM reachability and tool provider statuses as JSON."""

    out = stream or sys.stdout
    registry = ToolProviderRegistry(providers)
    await registry.refresh()
    ai_client = client or AIClient(settings.to_client_settings(debug_logging=debug_logging))
    try:
        reachable = await ai_client.health_check()
    finally:
        await ai_client.aclose()
    configured = bool(settings.base_url and settings.model)
    healthy = configured and reachable
    report = {
        "status": "healthy" if healthy else "unhealthy",
        "llm": {"configured": configured, "reachable": reachable, "baseUrl": settings.base_url},
        "toolProviders": [status.to_dict() for status in registry.statuses()],
    }
    out.write(json.dumps(report, indent=2) + "\n")
    return healthy


def _write_event(event: OrchestrationEvent, output_format: str, stream: TextIO) -> None:
    if output_format == "sse":
        stream.write(format_sse(event))
    else:
        stream.write(json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n")
    stream.flush()


def _load_provider(target: str) -> ToolProvider:
    """Import ``module:attr`` and return the provider it names.

    ``attr`` may be a dotted path. It may name a provider instance, a provider
    class or a zero-argument factory.
    """

    module_name, _, attr_path = target.partition(":")
    if not module_name or not attr_path:
        raise ValueError(f"Provider '{target}' must use MODULE:ATTR syntax.")
    obj: Any = importlib.import_module(module_name)
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    if isinstance(obj, type) or (callable(obj) and not isinstance(obj, ToolProvider)):
        obj = obj()
    if not isinstance(obj, ToolProvider):
        raise TypeError(f"'{target}' did not resolve to a tool provider")
    _LOGGER.debug("Loaded tool provider %s from %s", obj.provider_id, target)
    return obj


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        description="Send a prompt through the tool-execution loop and stream the events.",
    )
    parser.add_argument("prompt", nargs="?", help="User message; read from stdin when omitted.")
    parser.add_argument(
        "--format",
        choices=_OUTPUT_FORMATS,
        default="jsonl",
        help="Event output format (default: jsonl).",
    )
    parser.add_argument(
        "--provider",
        dest="providers",
        metavar="MODULE:ATTR",
        action="append",
        default=[],
        help="Import a tool provider, provider class or factory (repeatable).",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override a setting for this run (repeatable).",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Settings file to use instead of ~/.chatrelay/settings.json.",
    )
    parser.add_argument(
        "--health",
        action="store_true",
        help="Check LLM reachability and tool provider status, then exit.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the resolved settings with the API key redacted, then exit.",
    )
    return parser.parse_args(argv)


# -----------------------------------------------------------------------------
# --set coercion
# -----------------------------------------------------------------------------


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Parse ``KEY=VALUE`` items into typed values for :class:`Settings` fields.

    Raises:
        ValueError: On bad syntax, unknown keys or values of the wrong type.
    """

    hints = get_type_hints(Settings)
    parsed: Dict[str, Any] = {}
    for item in items:
        name, sep, raw = item.partition("=")
        name = name.strip()
        if not sep:
            raise ValueError(f"'{item}' is not in KEY=VALUE form.")
        if not name:
            raise ValueError(f"'{item}' does not name a setting.")
        if name not in hints:
            raise ValueError(f"'{name}' is not a known setting.")
        parsed[name] = _coerce_value(hints[name], raw.strip())
    return parsed


def _coerce_value(annotation: Any, raw: str) -> Any:
    base, nullable = _unwrap_optional(annotation)
    if nullable and raw.lower() in _NULL_VALUES:
        return None
    parser = _VALUE_PARSERS.get(base)
    return parser(raw) if parser is not None else raw


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    members = get_args(annotation)
    if type(None) not in members:
        return get_origin(annotation) or annotation, False
    rest = [member for member in members if member is not type(None)]
    if not rest:
        return Any, True
    return get_origin(rest[0]) or rest[0], True


def _parse_bool(value: str) -> bool:
    token = value.strip().lower()
    if token in _TRUE_VALUES:
        return True
    if token in _FALSE_VALUES:
        return False
    raise ValueError(f"'{value}' is not a boolean.")


def _parse_json_object(value: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(value or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"'{value}' is not valid JSON.") from exc
    if not isinstance(decoded, dict):
        raise ValueError(f"'{value}' is not a JSON object.")
    return decoded


_VALUE_PARSERS: Mapping[Any, Callable[[str], Any]] = {
    bool: _parse_bool,
    int: int,
    float: float,
    dict: _parse_json_object,
}


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    report = {
        "settings": {**asdict(settings), "api_key": redact_secret(settings.api_key)},
        "meta": {
            "path": str(store.path),
            "secret_backend": store.vault.strategy,
            "cli_overrides": sorted(overrides),
            "environment_variables": sorted(name for name in os.environ if name.startswith(_ENV_PREFIX)),
            "problems": validate_settings(settings),
        },
    }
    (stream or sys.stdout).write(json.dumps(report, indent=2) + "\n")


if __name__ == "__main__":  # pragma: no cover
    main()
