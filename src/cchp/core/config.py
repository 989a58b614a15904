"""Settings — defaults, optional config.json, and environment overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from cchp.core.state import load_json

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "compact": {
        "threshold": 50,
        "interval": 25,
    },
    "journal": {
        "retention_days": 7,
    },
    "logging": {
        "level": "INFO",
    },
}

# env var -> (section, key)
INT_OVERRIDES = {
    "CCHP_COMPACT_THRESHOLD": ("compact", "threshold"),
    "CCHP_COMPACT_INTERVAL": ("compact", "interval"),
    "CCHP_RETENTION_DAYS": ("journal", "retention_days"),
}


class ConfigError(Exception):
    """The state directory could not be resolved; hooks cannot run at all."""


@dataclass(frozen=True)
class Settings:
    state_dir: Path
    guide_dir: Path
    learned_dir: Path
    threshold: int = 50
    interval: int = 25
    retention_days: int = 7
    log_level: str = "INFO"

    @property
    def sessions_dir(self) -> Path:
        return self.state_dir / "sessions"

    @property
    def counters_dir(self) -> Path:
        return self.state_dir / "counters"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "hooks.log"

    @property
    def config_file(self) -> Path:
        return self.state_dir / "config.json"


def _home() -> Path:
    try:
        return Path.home()
    except RuntimeError as e:
        raise ConfigError(f"cannot determine home directory: {e}") from e


def _positive_int(value: Any, default: int, name: str) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer %s=%r, using %d", name, value, default)
        return default
    if parsed <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %d", name, value, default)
        return default
    return parsed


def merge_config(file_cfg: dict[str, Any]) -> dict[str, Any]:
    merged = {**DEFAULT_CONFIG}
    for section, default_val in DEFAULT_CONFIG.items():
        cfg_val = file_cfg.get(section, {})
        if isinstance(cfg_val, dict):
            merged[section] = {**default_val, **cfg_val}
    return merged


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Resolve settings from defaults, `config.json` and `CCHP_*` variables.

    Raises ConfigError when no state directory can be determined.
    """
    env = os.environ if env is None else env

    state_override = env.get("CCHP_STATE_DIR", "").strip()
    guide_override = env.get("CCHP_GUIDE_DIR", "").strip()
    learned_override = env.get("CCHP_LEARNED_DIR", "").strip()

    if state_override:
        state_dir = Path(state_override).expanduser()
    else:
        state_dir = _home() / ".claude" / "cchp"

    claude_dir = None
    if not guide_override or not learned_override:
        claude_dir = _home() / ".claude"

    guide_dir = Path(guide_override).expanduser() if guide_override else claude_dir / "agents"
    learned_dir = (
        Path(learned_override).expanduser() if learned_override
        else claude_dir / "skills" / "learned"
    )

    cfg = merge_config(load_json(state_dir / "config.json"))
    for var, (section, key) in INT_OVERRIDES.items():
        if env.get(var, "").strip():
            cfg[section] = {**cfg[section], key: env[var]}

    level = env.get("CCHP_LOG_LEVEL", "").strip() or cfg["logging"].get("level", "INFO")
    level = str(level).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        logger.warning("Ignoring unknown log level %r, using INFO", level)
        level = "INFO"

    return Settings(
        state_dir=state_dir,
        guide_dir=guide_dir,
        learned_dir=learned_dir,
        threshold=_positive_int(cfg["compact"]["threshold"], 50, "compact.threshold"),
        interval=_positive_int(cfg["compact"]["interval"], 25, "compact.interval"),
        retention_days=_positive_int(
            cfg["journal"]["retention_days"], 7, "journal.retention_days"
        ),
        log_level=level,
    )
