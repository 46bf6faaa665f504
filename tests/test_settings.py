"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatrelay.services.settings import (
    SecretVault,
    Settings,
    SettingsStore,
    env_overrides,
    redact_secret,
    validate_settings,
)


def _store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = _store(tmp_path).load()

    assert settings == Settings()
    assert settings.base_url == "http://localhost:1234/v1"
    assert not (tmp_path / "settings.json").exists()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="qwen2.5-7b-instruct",
        organization="acme",
        default_headers={"X-Test": "1"},
        max_tool_iterations=12,
        parallel_tools=True,
        system_prompt="Be brief.",
    )

    store.save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert "api_key" not in raw
    assert "super-secret" not in path.read_text(encoding="utf-8")
    assert raw["api_key_ciphertext"].startswith("fernet:")
    assert raw["version"] == 1
    assert raw["secret_backend"] == "fernet"
    assert path.with_suffix(".key").exists()


def test_load_legacy_plaintext_api_key(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"base_url": "https://old/v1", "api_key": "legacy-key", "model": "old-model"}),
        encoding="utf-8",
    )
    store = _store(tmp_path)

    settings = store.load()

    assert settings.api_key == "legacy-key"
    assert settings.model == "old-model"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert store.vault.decrypt(migrated["api_key_ciphertext"]) == "legacy-key"


def test_unknown_keys_are_ignored(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(json.dumps({"model": "m", "theme": "dark", "version": 1}), encoding="utf-8")

    assert _store(tmp_path).load() == Settings(model="m")


@pytest.mark.parametrize("body", ["{not json", "[1, 2, 3]"])
def test_unreadable_payload_falls_back_to_defaults(tmp_path: Path, body: str) -> None:
    (tmp_path / "settings.json").write_text(body, encoding="utf-8")

    assert _store(tmp_path).load() == Settings()


def test_undecryptable_api_key_is_dropped(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"api_key_ciphertext": "dpapi:abc", "model": "m", "version": 1}),
        encoding="utf-8",
    )

    settings = _store(tmp_path).load()

    assert settings.api_key == ""
    assert settings.model == "m"


def test_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(api_key="file-key", model="file-model"))
    monkeypatch.setenv("CHATRELAY_API_KEY", "env-key")
    monkeypatch.setenv("CHATRELAY_MODEL", "env-model")
    monkeypatch.setenv("CHATRELAY_PARALLEL_TOOLS", "yes")
    monkeypatch.setenv("CHATRELAY_MAX_TOOL_ITERATIONS", "4")
    monkeypatch.setenv("CHATRELAY_TOOL_TIMEOUT", "2.5")

    settings = store.load()

    assert settings.api_key == "env-key"
    assert settings.model == "env-model"
    assert settings.parallel_tools is True
    assert settings.max_tool_iterations == 4
    assert settings.tool_timeout_seconds == 2.5


def test_invalid_numeric_env_override_is_ignored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHATRELAY_MAX_TOKENS", "lots")
    monkeypatch.setenv("CHATRELAY_TEMPERATURE", "warm")

    settings = _store(tmp_path).load()

    assert settings.max_tokens is None
    assert settings.temperature == 0.7


def test_load_applies_cli_overrides(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(Settings(default_headers={"X-A": "1"}))

    settings = store.load(overrides={"model": "cli-model", "default_headers": {"X-B": "2"}, "bogus": 1})

    assert settings.model == "cli-model"
    assert settings.default_headers == {"X-A": "1", "X-B": "2"}


def test_env_overrides_take_priority_over_cli(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CHATRELAY_BASE_URL", "http://env:8080/v1")

    settings = _store(tmp_path).load(overrides={"base_url": "http://cli:9000/v1"})

    assert settings.base_url == "http://env:8080/v1"


def test_secret_vault_rejects_foreign_or_tampered_tokens(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")
    token = vault.encrypt("secret")

    assert vault.strategy == "fernet"
    assert vault.decrypt(token) == "secret"
    assert vault.encrypt("") == ""
    assert vault.decrypt(None) == ""
    with pytest.raises(ValueError, match="unsupported backend"):
        vault.decrypt("dpapi:payload")
    with pytest.raises(ValueError, match="Invalid Fernet token"):
        vault.decrypt("fernet:not-a-token")


def test_vault_key_is_reused(tmp_path: Path) -> None:
    token = SecretVault(key_path=tmp_path / "key").encrypt("secret")
    assert SecretVault(key_path=tmp_path / "key").decrypt(token) == "secret"


def test_projections() -> None:
    settings = Settings(
        api_key="k",
        temperature=0.2,
        max_tool_iterations=0,
        tool_timeout_seconds=-3,
        parallel_tools=True,
        system_prompt="",
    )

    client_settings = settings.to_client_settings(debug_logging=True)
    assert client_settings.api_key == "k"
    assert client_settings.temperature == 0.2
    assert client_settings.default_headers is None
    assert client_settings.debug_logging is True

    config = settings.to_orchestrator_config()
    assert config.max_iterations == 1
    assert config.tool_timeout == 0.0
    assert config.parallel_tools is True
    assert config.system_prompt is None


def test_validate_settings() -> None:
    assert validate_settings(Settings()) == []

    problems = validate_settings(
        Settings(
            base_url="localhost:1234",
            model=" ",
            temperature=3.0,
            max_tokens=0,
            top_p=1.5,
            presence_penalty=-3.0,
            max_tool_iterations=0,
            tool_timeout_seconds=-1,
        )
    )

    assert len(problems) == 8
    assert problems[0].startswith("base_url must be an http(s) URL")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("", ""),
        ("abcd", "****"),
        ("sk-123456", "sk*****56"),
    ],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected


def test_env_overrides_reads_given_mapping() -> None:
    overrides = env_overrides(
        {
            "CHATRELAY_DEBUG_EVENT_LOGGING": "on",
            "CHATRELAY_REQUEST_TIMEOUT": "12",
            "CHATRELAY_MAX_TOKENS": "x",
            "UNRELATED": "1",
        }
    )

    assert overrides == {"debug_event_logging": True, "request_timeout": 12.0}
