"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from mobileuse.agent.models import Pacing
from mobileuse.llm.client import MAX_CONVERSATION_EXCHANGES

DEFAULT_MODEL = "gpt-4o"
DEFAULT_MAX_STEPS = 100
DEFAULT_API_URL = "https://api.openai.com/v1/responses"


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
    """Runtime settings loaded from config files and environment variables."""

    api_key: str | None
    model: str
    api_url: str
    log_dir: str
    max_steps: int
    maestro_executable: str = "maestro"
    flow_timeout: float = 30.0
    screenshot_timeout: float = 15.0
    save_eval_screens: bool = False
    eval_screens_dir: str = "eval-screens"
    conversation_window: int = MAX_CONVERSATION_EXCHANGES
    pacing: Pacing = field(default_factory=Pacing)

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        openai_from_file = file_config.get("openai")
        openai_config = openai_from_file if isinstance(openai_from_file, dict) else {}
        maestro_from_file = file_config.get("maestro")
        maestro_config = maestro_from_file if isinstance(maestro_from_file, dict) else {}
        pacing_from_file = file_config.get("pacing")
        pacing_config = pacing_from_file if isinstance(pacing_from_file, dict) else {}
        defaults = Pacing()

        return cls(
            api_key=(
                os.getenv("MOBILEUSE_OPENAI_API_KEY")
                or os.getenv("OPENAI_API_KEY")
                or _to_optional_string(openai_config.get("api_key"))
                or _to_optional_string(file_config.get("api_key"))
            ),
            model=(
                os.getenv("MOBILEUSE_MODEL")
                or _to_optional_string(file_config.get("default_model"))
                or DEFAULT_MODEL
            ),
            api_url=(
                os.getenv("MOBILEUSE_API_URL")
                or _to_optional_string(openai_config.get("api_url"))
                or DEFAULT_API_URL
            ),
            log_dir=(
                os.getenv("MOBILEUSE_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            max_steps=_to_positive_int(
                os.getenv("MOBILEUSE_MAX_STEPS") or file_config.get("max_steps"),
                default=DEFAULT_MAX_STEPS,
            ),
            maestro_executable=(
                os.getenv("MOBILEUSE_MAESTRO")
                or _to_optional_string(maestro_config.get("executable"))
                or "maestro"
            ),
            flow_timeout=_to_non_negative_float(
                os.getenv("MOBILEUSE_FLOW_TIMEOUT") or maestro_config.get("flow_timeout"),
                default=30.0,
            ),
            screenshot_timeout=_to_non_negative_float(
                os.getenv("MOBILEUSE_SCREENSHOT_TIMEOUT")
                or maestro_config.get("screenshot_timeout"),
                default=15.0,
            ),
            save_eval_screens=_to_bool(
                os.getenv("MOBILEUSE_SAVE_EVAL_SCREENS"),
                default=bool(file_config.get("save_eval_screens", False)),
            ),
            eval_screens_dir=(
                os.getenv("MOBILEUSE_EVAL_SCREENS_DIR")
                or _to_optional_string(file_config.get("eval_screens_dir"))
                or "eval-screens"
            ),
            conversation_window=_to_positive_int(
                os.getenv("MOBILEUSE_CONVERSATION_WINDOW")
                or file_config.get("conversation_window"),
                default=MAX_CONVERSATION_EXCHANGES,
            ),
            pacing=Pacing(
                launch_settle=_to_non_negative_float(
                    pacing_config.get("launch_settle"), default=defaults.launch_settle
                ),
                no_app_settle=_to_non_negative_float(
                    pacing_config.get("no_app_settle"), default=defaults.no_app_settle
                ),
                error_backoff=_to_non_negative_float(
                    pacing_config.get("error_backoff"), default=defaults.error_backoff
                ),
                inter_step=_to_non_negative_float(
                    pacing_config.get("inter_step"), default=defaults.inter_step
                ),
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
    explicit_path = os.getenv("MOBILEUSE_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("mobileuse.config.json")
    local_override = _load_file_config("mobileuse.config.local.json")
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


def _to_non_negative_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed >= 0 else default
    return default
