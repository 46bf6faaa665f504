"""Runtime settings: defaults, validation, persistence and overrides.

Settings are resolved in four layers, later layers winning: dataclass
defaults, the JSON settings file, ``--set`` overrides from the command line and
``CHATRELAY_*`` environment variables.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Tuple
from urllib.parse import urlparse

from ..ai.client import ClientSettings
from ..ai.orchestration.runner import OrchestratorConfig
from .secrets import SecretVault

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "env_overrides",
    "redact_secret",
    "validate_settings",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".chatrelay" / "settings.json"
SETTINGS_VERSION = 1
_CIPHERTEXT_KEY = "api_key_ciphertext"
_TRUTHY = frozenset({"1", "true", "yes", "on", "debug"})


@dataclass(slots=True)
class Settings:
    """Everything needed to reach the model endpoint and drive the tool loop."""

    # Model endpoint
    base_url: str = "http://localhost:1234/v1"
    api_key: str = ""
    model: str = "local-model"
    organization: str | None = None
    default_headers: dict[str, str] = field(default_factory=dict)
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0

    # Sampling
    temperature: float = 0.7
    max_tokens: int | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    system_prompt: str | None = None

    # Tool loop
    max_tool_iterations: int = 10
    tool_timeout_seconds: float = 30.0
    parallel_tools: bool = False

    # Diagnostics
    debug_logging: bool = False
    debug_event_logging: bool = False

    def to_client_settings(self, *, debug_logging: bool = False) -> ClientSettings:
        return ClientSettings(
            base_url=self.base_url,
            api_key=self.api_key,
            model=self.model,
            organization=self.organization,
            request_timeout=self.request_timeout,
            max_retries=self.max_retries,
            retry_min_seconds=self.retry_min_seconds,
            retry_max_seconds=self.retry_max_seconds,
            default_headers=dict(self.default_headers) or None,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            presence_penalty=self.presence_penalty,
            frequency_penalty=self.frequency_penalty,
            debug_logging=debug_logging or self.debug_logging,
        )

    def to_orchestrator_config(self) -> OrchestratorConfig:
        """Loop configuration, with out-of-range values clamped."""
        return OrchestratorConfig(
            max_iterations=max(1, int(self.max_tool_iterations)),
            tool_timeout=max(0.0, float(self.tool_timeout_seconds)),
            parallel_tools=bool(self.parallel_tools),
            system_prompt=self.system_prompt or None,
        )


def validate_settings(settings: Settings) -> List[str]:
    """Return human-readable problems with ``settings``; empty when valid.

    Ranges follow the OpenAI chat-completions parameter bounds.
    """

    problems: List[str] = []
    parsed = urlparse(settings.base_url or "")
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        problems.append(f"base_url must be an http(s) URL, got {settings.base_url!r}")
    if not (settings.model or "").strip():
        problems.append("model must not be empty")
    if not 0.0 <= settings.temperature <= 2.0:
        problems.append("temperature must be between 0 and 2")
    if settings.max_tokens is not None and settings.max_tokens <= 0:
        problems.append("max_tokens must be positive")
    if settings.top_p is not None and not 0.0 <= settings.top_p <= 1.0:
        problems.append("top_p must be between 0 and 1")
    for name in ("presence_penalty", "frequency_penalty"):
        value = getattr(settings, name)
        if value is not None and not -2.0 <= value <= 2.0:
            problems.append(f"{name} must be between -2 and 2")
    if settings.max_tool_iterations < 1:
        problems.append("max_tool_iterations must be at least 1")
    if settings.tool_timeout_seconds < 0:
        problems.append("tool_timeout_seconds must be non-negative")
    return problems


# -----------------------------------------------------------------------------
# Overrides
# -----------------------------------------------------------------------------


def _flag(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


_ENV_FIELDS: Mapping[str, Tuple[str, Callable[[str], Any]]] = {
    "CHATRELAY_API_KEY": ("api_key", str),
    "CHATRELAY_BASE_URL": ("base_url", str),
    "CHATRELAY_MODEL": ("model", str),
    "CHATRELAY_ORGANIZATION": ("organization", str),
    "CHATRELAY_SYSTEM_PROMPT": ("system_prompt", str),
    "CHATRELAY_REQUEST_TIMEOUT": ("request_timeout", float),
    "CHATRELAY_TEMPERATURE": ("temperature", float),
    "CHATRELAY_TOOL_TIMEOUT": ("tool_timeout_seconds", float),
    "CHATRELAY_MAX_TOKENS": ("max_tokens", int),
    "CHATRELAY_MAX_TOOL_ITERATIONS": ("max_tool_iterations", int),
    "CHATRELAY_PARALLEL_TOOLS": ("parallel_tools", _flag),
    "CHATRELAY_DEBUG_LOGGING": ("debug_logging", _flag),
    "CHATRELAY_DEBUG_EVENT_LOGGING": ("debug_event_logging", _flag),
}


def env_overrides(environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Collect settings overrides from ``CHATRELAY_*`` variables.

    Values that fail to parse are logged and skipped.
    """

    source = os.environ if environ is None else environ
    collected: Dict[str, Any] = {}
    for env_name, (field_name, parse) in _ENV_FIELDS.items():
        raw = source.get(env_name)
        if raw is None:
            continue
        try:
            collected[field_name] = parse(raw)
        except ValueError:
            LOGGER.warning("Ignoring %s=%r: expected %s", env_name, raw, getattr(parse, "__name__", "a value"))
    return collected


def merge_overrides(settings: Settings, overrides: Mapping[str, Any], *, source: str) -> Settings:
    """Return ``settings`` with known, non-``None`` overrides applied.

    ``default_headers`` is merged key by key instead of replaced.
    """

    known = _field_names()
    changes = {key: value for key, value in overrides.items() if key in known and value is not None}
    if isinstance(changes.get("default_headers"), Mapping):
        changes["default_headers"] = {**settings.default_headers, **changes["default_headers"]}
    if not changes:
        return settings
    LOGGER.debug("Applying %s overrides: %s", source, ", ".join(sorted(changes)))
    return replace(settings, **changes)


def _field_names() -> frozenset[str]:
    return frozenset(item.name for item in fields(Settings))


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------


class SettingsStore:
    """Reads and writes :class:`Settings` as JSON with an encrypted API key.

    The key file sits next to the settings file (``settings.key`` for
    ``settings.json``) unless a vault is supplied.
    """

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self.path = path or DEFAULT_SETTINGS_PATH
        self.vault = vault or SecretVault(key_path=self.path.with_suffix(".key"))

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Resolve settings from the file, ``overrides`` and the environment.

        Files written by an older version, or holding a plaintext ``api_key``,
        are rewritten in the current format.
        """

        document = self._read_document()
        settings, stale = self._from_document(document) if document else (Settings(), False)
        if stale:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Could not upgrade settings file %s: %s", self.path, exc)

        if overrides:
            settings = merge_overrides(settings, overrides, source="command-line")
        return merge_overrides(settings, env_overrides(), source="environment")

    def save(self, settings: Settings) -> Path:
        """Write ``settings`` atomically; the API key is stored encrypted."""

        document = asdict(settings)
        api_key = document.pop("api_key") or ""
        if api_key:
            document[_CIPHERTEXT_KEY] = self.vault.encrypt(api_key)
        document["version"] = SETTINGS_VERSION
        document["secret_backend"] = self.vault.strategy

        self.path.parent.mkdir(parents=True, exist_ok=True)
        staging = self.path.with_name(self.path.name + ".tmp")
        staging.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(staging, self.path)
        LOGGER.debug("Saved settings to %s", self.path)
        return self.path

    def _read_document(self) -> Dict[str, Any]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Ignoring settings file %s: invalid JSON (%s)", self.path, exc)
            return {}
        if not isinstance(document, dict):
            LOGGER.warning("Ignoring settings file %s: expected a JSON object", self.path)
            return {}
        return document

    def _from_document(self, document: Mapping[str, Any]) -> tuple[Settings, bool]:
        known = _field_names() - {"api_key"}
        values = {key: value for key, value in document.items() if key in known}
        try:
            settings = Settings(**values)
        except TypeError as exc:
            LOGGER.warning("Settings file %s has unexpected values: %s", self.path, exc)
            settings = Settings()

        stale = document.get("version") != SETTINGS_VERSION
        ciphertext = document.get(_CIPHERTEXT_KEY)
        legacy_key = document.get("api_key")
        if ciphertext:
            try:
                settings.api_key = self.vault.decrypt(ciphertext)
            except ValueError as exc:
                LOGGER.warning("Stored API key could not be decrypted: %s", exc)
        elif legacy_key:
            LOGGER.info("Encrypting plaintext API key found in %s", self.path)
            settings.api_key = str(legacy_key)
            stale = True
        LOGGER.debug("Loaded settings from %s (model=%s)", self.path, settings.model)
        return settings, stale


def redact_secret(value: str) -> str:
    """Mask ``value`` for display, keeping two characters at each end when it is long enough."""

    secret = (value or "").strip()
    keep = 2 if len(secret) > 4 else 0
    hidden = len(secret) - 2 * keep
    return secret[:keep] + "*" * hidden + secret[len(secret) - keep :]
