import json
import os

import pytest

from scoutai.config import AppConfig


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    for name in list(os.environ):
        if name.startswith("SCOUTAI_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_app_config_loads_openai_and_model_reasoning_from_file(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "custom.json"
    config_path.write_text(
        json.dumps(
            {
                "openai": {
                    "api_key": "test-key",
                    "api_url": "https://example.test/v1/responses",
                },
                "default_model": "gpt-5.2-codex",
                "models": {"gpt-5.2-codex": {"reasoning_effort": "low"}},
                "log_dir": "test-logs",
                "max_iterations": 12,
                "handoff_threshold": 0.8,
            }
        ),
        encoding="utf-8",
    )

    monkeypatch.setenv("SCOUTAI_CONFIG_FILE", str(config_path))

    config = AppConfig.from_env()

    assert config.api_key == "test-key"
    assert config.model == "gpt-5.2-codex"
    assert config.reasoning_effort == "low"
    assert config.api_url == "https://example.test/v1/responses"
    assert config.blueprint_api_url == "https://example.test/v1/responses"
    assert config.blueprint_model == "gpt-5.2-codex"
    assert config.log_dir == "test-logs"
    assert config.max_iterations == 12
    assert config.handoff_threshold == pytest.approx(0.8)


def test_defaults_without_any_config() -> None:
    config = AppConfig.from_env()

    assert config.api_key is None
    assert config.model == "gpt-5.2"
    assert config.reasoning_effort == "medium"
    assert config.api_url == "https://api.openai.com/v1/responses"
    assert config.log_dir == "logs"
    assert config.system_prompt is None
    assert config.max_iterations == 20
    assert config.handoff_threshold == pytest.approx(0.7)
    assert config.workspace_root is None
    assert config.request_timeout == pytest.approx(120.0)
    assert config.include_runtime_context is True


def test_local_config_overrides_shared_config(tmp_path) -> None:
    (tmp_path / "scoutai.config.json").write_text(
        json.dumps({"openai": {"api_key": "shared", "api_url": "https://shared"}, "shell": "sh"}),
        encoding="utf-8",
    )
    (tmp_path / "scoutai.config.local.json").write_text(
        json.dumps({"openai": {"api_key": "local"}}),
        encoding="utf-8",
    )

    config = AppConfig.from_env()

    assert config.api_key == "local"
    assert config.api_url == "https://shared"
    assert config.shell == "sh"


def test_env_overrides_file_values(tmp_path, monkeypatch) -> None:
    (tmp_path / "scoutai.config.json").write_text(
        json.dumps({"max_iterations": 8, "workspace": "/from/file", "log_dir": "file-logs"}),
        encoding="utf-8",
    )
    monkeypatch.setenv("SCOUTAI_MAX_ITERATIONS", "3")
    monkeypatch.setenv("SCOUTAI_WORKSPACE", "/from/env")
    monkeypatch.setenv("SCOUTAI_API_KEY", "env-key")
    monkeypatch.setenv("SCOUTAI_REASONING_EFFORT", "high")

    config = AppConfig.from_env()

    assert config.max_iterations == 3
    assert config.workspace_root == "/from/env"
    assert config.log_dir == "file-logs"
    assert config.api_key == "env-key"
    assert config.reasoning_effort == "high"


def test_invalid_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("SCOUTAI_MAX_ITERATIONS", "0")
    monkeypatch.setenv("SCOUTAI_HANDOFF_THRESHOLD", "1.5")
    monkeypatch.setenv("SCOUTAI_REQUEST_TIMEOUT", "soon")

    config = AppConfig.from_env()

    assert config.max_iterations == 20
    assert config.handoff_threshold == pytest.approx(0.7)
    assert config.request_timeout == pytest.approx(120.0)


def test_reasoning_effort_is_unset_for_other_model_families(monkeypatch) -> None:
    monkeypatch.setenv("SCOUTAI_MODEL", "gpt-4.1-mini")

    config = AppConfig.from_env()

    assert config.reasoning_effort is None


@pytest.mark.parametrize(
    ("value", "expected"),
    [("pwsh", "powershell"), ("PowerShell", "powershell"), ("sh", "sh"), ("zsh", "bash")],
)
def test_shell_names_are_normalized(monkeypatch, value, expected) -> None:
    monkeypatch.setenv("SCOUTAI_SHELL", value)

    assert AppConfig.from_env().shell == expected


def test_malformed_config_file_is_ignored(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "broken.json"
    config_path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("SCOUTAI_CONFIG_FILE", str(config_path))

    config = AppConfig.from_env()

    assert config.model == "gpt-5.2"


def test_runtime_context_can_be_disabled(monkeypatch) -> None:
    monkeypatch.setenv("SCOUTAI_RUNTIME_CONTEXT", "off")

    assert AppConfig.from_env().include_runtime_context is False
