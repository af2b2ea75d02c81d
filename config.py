"""Sub-agent settings, read from the "subagents" section of config.json.

Environment variables override the file:
    RAIN_SUBAGENTS_CONFIG         - path to config.json
    RAIN_SUBAGENTS_ENABLED        - "0"/"false"/"no"/"off" disables the tool
    RAIN_SUBAGENTS_MAX_CONCURRENT - max simultaneously active sub-agents
    RAIN_SUBAGENTS_DEFAULT_MODEL  - model used when a template has none
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".rain-subagents"
CONFIG_FILE = CONFIG_DIR / "config.json"

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class SubAgentSettings:
    enabled: bool = True
    max_concurrent: int = 5
    max_history: int = 100
    max_task_length: int = 5000
    default_timeout: float = 600  # seconds, 0 disables
    default_model: str = "gpt-4o"
    provider: str = "openai"
    available_skills: list[str] = field(default_factory=list)
    template_files: list[str] = field(default_factory=lambda: ["AGENTS.md"])

    @classmethod
    def from_dict(cls, data: dict) -> "SubAgentSettings":
        """Build settings from a raw dict, keeping defaults for bad values."""
        settings = cls()
        if not isinstance(data, dict):
            logger.warning("Ignoring 'subagents' config: expected an object")
            return settings

        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            default = getattr(settings, f.name)
            if isinstance(default, bool):
                ok = isinstance(value, bool)
            elif isinstance(default, (int, float)):
                ok = isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0
            elif isinstance(default, list):
                ok = isinstance(value, list) and all(isinstance(v, str) for v in value)
            else:
                ok = isinstance(value, str) and bool(value)
            if not ok:
                logger.warning("Invalid subagents.%s=%r, using %r", f.name, value, default)
                continue
            setattr(settings, f.name, value)

        if settings.max_concurrent < 1:
            logger.warning("subagents.max_concurrent must be >= 1, using 1")
            settings.max_concurrent = 1
        _clamp_history(settings)
        return settings


def _clamp_history(settings: SubAgentSettings) -> None:
    # The store must be able to hold every active record at once.
    if settings.max_history < settings.max_concurrent:
        logger.warning(
            "subagents.max_history=%d is below max_concurrent=%d, using %d",
            settings.max_history, settings.max_concurrent, settings.max_concurrent,
        )
        settings.max_history = settings.max_concurrent


def _apply_env(settings: SubAgentSettings) -> None:
    enabled = os.environ.get("RAIN_SUBAGENTS_ENABLED")
    if enabled is not None:
        settings.enabled = enabled.strip().lower() not in _FALSE_VALUES

    max_concurrent = os.environ.get("RAIN_SUBAGENTS_MAX_CONCURRENT")
    if max_concurrent:
        try:
            settings.max_concurrent = max(1, int(max_concurrent))
        except ValueError:
            logger.warning("Invalid RAIN_SUBAGENTS_MAX_CONCURRENT=%r", max_concurrent)

    model = os.environ.get("RAIN_SUBAGENTS_DEFAULT_MODEL")
    if model:
        settings.default_model = model


def load_settings(path: str | Path | None = None) -> SubAgentSettings:
    """Load settings from config.json (if present) plus env overrides."""
    config_path = Path(path or os.environ.get("RAIN_SUBAGENTS_CONFIG") or CONFIG_FILE)
    data: dict = {}
    if config_path.exists():
        try:
            cfg = json.loads(config_path.read_text(encoding="utf-8"))
            data = cfg.get("subagents", {}) if isinstance(cfg, dict) else {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not read %s: %s, using defaults", config_path, e)

    settings = SubAgentSettings.from_dict(data)
    _apply_env(settings)
    _clamp_history(settings)
    return settings
