"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from scoutai.exploration.models import DEFAULT_MAX_ITERATIONS
from scoutai.exploration.orchestrator import DEFAULT_HANDOFF_THRESHOLD

DEFAULT_API_URL = "https://api.openai.com/v1/responses"
DEFAULT_MODEL = "gpt-5.2"


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    api_key: str | None
    model: str
    reasoning_effort: str | None
    api_url: str
    blueprint_model: str
    blueprint_api_url: str
    log_dir: str
    system_prompt: str | None
    shell: str
    max_iterations: int
    handoff_threshold: float
    workspace_root: str | None
    request_timeout: float
    include_runtime_context: bool

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        openai_from_file = file_config.get("openai")
        openai_config = openai_from_file if isinstance(openai_from_file, dict) else {}
        models_from_file = file_config.get("models")
        model_config = models_from_file if isinstance(models_from_file, dict) else {}

        selected_model = os.getenv("SCOUTAI_MODEL") or str(
            file_config.get("default_model", DEFAULT_MODEL)
        )
        selected_model_entry = model_config.get(selected_model)
        selected_model_config = (
            selected_model_entry if isinstance(selected_model_entry, dict) else {}
        )
        api_url = (
            os.getenv("SCOUTAI_API_URL")
            or _to_optional_string(openai_config.get("api_url"))
            or DEFAULT_API_URL
        )

        return cls(
            api_key=(
                os.getenv("SCOUTAI_OPENAI_API_KEY")
                or os.getenv("SCOUTAI_API_KEY")
                or _to_optional_string(openai_config.get("api_key"))
                or _to_optional_string(file_config.get("api_key"))
            ),
            model=selected_model,
            reasoning_effort=(
                os.getenv("SCOUTAI_REASONING_EFFORT")
                or _to_optional_string(selected_model_config.get("reasoning_effort"))
                or _default_reasoning_effort(selected_model)
            ),
            api_url=api_url,
            blueprint_model=(
                os.getenv("SCOUTAI_BLUEPRINT_MODEL")
                or _to_optional_string(file_config.get("blueprint_model"))
                or selected_model
            ),
            blueprint_api_url=(
                os.getenv("SCOUTAI_BLUEPRINT_API_URL")
                or _to_optional_string(openai_config.get("blueprint_api_url"))
                or api_url
            ),
            log_dir=(
                os.getenv("SCOUTAI_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            system_prompt=(
                os.getenv("SCOUTAI_SYSTEM_PROMPT")
                or _to_optional_string(file_config.get("system_prompt"))
            ),
            shell=_resolve_shell(
                os.getenv("SCOUTAI_SHELL")
                or _to_optional_string(file_config.get("shell"))
            ),
            max_iterations=_to_positive_int(
                os.getenv("SCOUTAI_MAX_ITERATIONS")
                or file_config.get("max_iterations"),
                default=DEFAULT_MAX_ITERATIONS,
            ),
            handoff_threshold=_to_unit_float(
                os.getenv("SCOUTAI_HANDOFF_THRESHOLD")
                or file_config.get("handoff_threshold"),
                default=DEFAULT_HANDOFF_THRESHOLD,
            ),
            workspace_root=(
                os.getenv("SCOUTAI_WORKSPACE")
                or _to_optional_string(file_config.get("workspace"))
            ),
            request_timeout=_to_positive_float(
                os.getenv("SCOUTAI_REQUEST_TIMEOUT")
                or file_config.get("request_timeout"),
                default=120.0,
            ),
            include_runtime_context=_to_bool(
                os.getenv("SCOUTAI_RUNTIME_CONTEXT"),
                default=bool(file_config.get("runtime_context", True)),
            ),
        )


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("SCOUTAI_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("scoutai.config.json")
    local_override = _load_file_config("scoutai.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _default_reasoning_effort(model: str) -> str | None:
    """Provide practical defaults for reasoning-capable model families."""
    normalized = model.strip().lower()
    if normalized.startswith("gpt-5") or normalized.startswith("o"):
        return "medium"
    return None


def _resolve_shell(value: str | None) -> str:
    if value is None:
        return "powershell" if os.name == "nt" else "bash"
    normalized = value.strip().lower()
    if normalized in {"powershell", "pwsh"}:
        return "powershell"
    if normalized == "sh":
        return "sh"
    return "bash"


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_positive_float(value: object, *, default: float) -> float:
    parsed = _to_float(value)
    return parsed if parsed is not None and parsed > 0 else default


def _to_unit_float(value: object, *, default: float) -> float:
    parsed = _to_float(value)
    return parsed if parsed is not None and 0.0 <= parsed <= 1.0 else default
