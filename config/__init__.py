"""Configuration management."""
import os
import re
import yaml
from pathlib import Path

_CONFIG_DIR = Path(__file__).parent
_DEFAULT_CONFIG = _CONFIG_DIR / "default_config.yaml"
DEFAULT_ALERT_DEFAULTS = _CONFIG_DIR / "alert_defaults.yaml"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def load_config(path=None):
    """Load config from YAML, merging defaults with optional overrides."""
    with open(_DEFAULT_CONFIG) as f:
        config = yaml.safe_load(f)

    if path and Path(path).exists():
        with open(path) as f:
            overrides = yaml.safe_load(f) or {}
        config = _deep_merge(config, overrides)

    # Environment variable overrides
    env_map = {
        "STRAT_ALERTS_DB_PATH": ("database", "path"),
        "STRAT_ALERTS_LOG_LEVEL": ("logging", "level"),
        "STRAT_ALERTS_MAX_WORKERS": ("engine", "max_workers"),
    }
    for env_key, config_path in env_map.items():
        val = os.environ.get(env_key)
        if val:
            d = config
            for k in config_path[:-1]:
                d = d.setdefault(k, {})
            try:
                d[config_path[-1]] = int(val)
            except ValueError:
                d[config_path[-1]] = val

    _validate_config(config)
    return config


def resolve_defaults_path(config):
    """Alert defaults path from config, relative paths resolved against the package if missing."""
    raw = config.get("engine", {}).get("alert_defaults")
    if not raw:
        return DEFAULT_ALERT_DEFAULTS
    path = Path(raw)
    if not path.exists() and (_CONFIG_DIR / path.name).exists():
        return _CONFIG_DIR / path.name
    return path


def _deep_merge(base, override):
    """Recursively merge override into base dict."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _validate_config(config):
    """Check required sections and the values the engine and scheduler depend on."""
    required_sections = ["database", "logging", "engine", "channels", "scheduler"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required config section: {section}")

    if int(config["engine"].get("max_workers", 0)) < 0:
        raise ValueError("engine.max_workers must be >= 0")

    level = str(config["logging"].get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {', '.join(_LOG_LEVELS)}, got {level!r}")

    sched = config["scheduler"]
    for key in ("auto_resolve_time", "daily_digest_time", "weekly_digest_time"):
        if key in sched and not _HHMM.match(str(sched[key])):
            raise ValueError(f"scheduler.{key} must be HH:MM, got {sched[key]!r}")
    day = str(sched.get("weekly_digest_day", "sunday")).lower()
    if day not in _WEEKDAYS:
        raise ValueError(f"scheduler.weekly_digest_day must be a weekday name, got {day!r}")
