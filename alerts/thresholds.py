"""Per-user alert threshold configuration: loading, parsing and validation."""
import copy
import logging
import threading
import yaml
from pathlib import Path

from config import DEFAULT_ALERT_DEFAULTS
from models.config import (
    AlertConfiguration, DrawdownThreshold, PerformanceMilestone, MarketConditionThresholds,
    StatisticalSignificanceSettings, GlobalSettings,
)
from models.enums import AlertSeverity, NotificationChannel, ThresholdOperator
from alerts.evaluators import DRAWDOWN_METRICS, MILESTONE_METRICS
from utils.errors import ValidationError

logger = logging.getLogger("stratalerts.alerts.thresholds")

SECTIONS = (
    "drawdown_limits",
    "performance_milestones",
    "market_condition_thresholds",
    "statistical_significance_settings",
    "global_settings",
)

MAX_MARKET_CHANGE_PCT = 1000.0


def parse_enum(enum_cls, raw, errors, where):
    try:
        return enum_cls(raw)
    except ValueError:
        valid = ", ".join(e.value for e in enum_cls)
        errors.append(f"{where}: unknown value {raw!r} (expected one of {valid})")
        return None


def _number(raw, errors, where, cast=float):
    if isinstance(raw, bool):
        errors.append(f"{where}: expected a number, got {raw!r}")
        return None
    try:
        return cast(raw)
    except (TypeError, ValueError):
        errors.append(f"{where}: expected a number, got {raw!r}")
        return None


def _parse_rule_common(raw, errors, where, valid_metrics):
    rule_id = raw.get("id")
    if not rule_id:
        errors.append(f"{where}: missing id")
    metric = raw.get("metric")
    if metric not in valid_metrics:
        errors.append(f"{where}: unknown metric {metric!r} (expected one of {', '.join(sorted(valid_metrics))})")
    operator = parse_enum(ThresholdOperator, raw.get("operator", "greater_than"), errors, f"{where}.operator")
    value = _number(raw.get("value"), errors, f"{where}.value")
    return {
        "id": rule_id or "",
        "metric": metric or "",
        "operator": operator or ThresholdOperator.GREATER_THAN,
        "value": value if value is not None else 0.0,
        "enabled": bool(raw.get("enabled", True)),
        "description": raw.get("description", ""),
        "strategy_id": raw.get("strategy_id"),
    }


def _parse_drawdown(raw, errors, where):
    fields = _parse_rule_common(raw, errors, where, DRAWDOWN_METRICS)
    if not 0 < fields["value"] <= 100:
        errors.append(f"{where}.value: drawdown percentage must be in (0, 100], got {fields['value']}")
    channels = []
    for i, c in enumerate(raw.get("notification_channels", ["InApp"]) or []):
        parsed = parse_enum(NotificationChannel, c, errors, f"{where}.notification_channels[{i}]")
        if parsed is not None:
            channels.append(parsed)
    severity = None
    if raw.get("severity") is not None:
        severity = parse_enum(AlertSeverity, raw["severity"], errors, f"{where}.severity")
    return DrawdownThreshold(
        suspend_strategy=bool(raw.get("suspend_strategy", False)),
        notification_channels=channels,
        severity=severity,
        **fields,
    )


def _parse_milestone(raw, errors, where):
    fields = _parse_rule_common(raw, errors, where, MILESTONE_METRICS)
    return PerformanceMilestone(
        celebratory=bool(raw.get("celebratory", True)),
        suggest_position_increase=bool(raw.get("suggest_position_increase", False)),
        **fields,
    )


def parse_configuration(data):
    """Build an AlertConfiguration from a plain dict, raising ValidationError on any problem."""
    data = data or {}
    errors = []

    unknown = set(data) - set(SECTIONS)
    if unknown:
        errors.append(f"unknown configuration sections: {', '.join(sorted(unknown))}")

    drawdowns = [_parse_drawdown(r or {}, errors, f"drawdown_limits[{i}]")
                 for i, r in enumerate(data.get("drawdown_limits") or [])]
    milestones = [_parse_milestone(r or {}, errors, f"performance_milestones[{i}]")
                  for i, r in enumerate(data.get("performance_milestones") or [])]

    ids = [t.id for t in drawdowns + milestones if t.id]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        errors.append(f"duplicate threshold ids: {', '.join(dupes)}")

    mkt_raw = data.get("market_condition_thresholds") or {}
    mkt = MarketConditionThresholds()
    for name in ("volatility_change", "volume_change", "correlation_change"):
        if name in mkt_raw:
            val = _number(mkt_raw[name], errors, f"market_condition_thresholds.{name}")
            if val is None:
                continue
            if not 0 < val <= MAX_MARKET_CHANGE_PCT:
                errors.append(f"market_condition_thresholds.{name}: percentage must be in "
                              f"(0, {MAX_MARKET_CHANGE_PCT:g}], got {val}")
            setattr(mkt, name, val)

    sig_raw = data.get("statistical_significance_settings") or {}
    sig = StatisticalSignificanceSettings()
    if "minimum_trades" in sig_raw:
        val = _number(sig_raw["minimum_trades"], errors, "statistical_significance_settings.minimum_trades", int)
        if val is not None:
            if val < 1:
                errors.append(f"statistical_significance_settings.minimum_trades: must be >= 1, got {val}")
            sig.minimum_trades = val
    if "required_confidence" in sig_raw:
        val = _number(sig_raw["required_confidence"], errors, "statistical_significance_settings.required_confidence")
        if val is not None:
            if not 0 < val <= 100:
                errors.append(f"statistical_significance_settings.required_confidence: must be in (0, 100], got {val}")
            sig.required_confidence = val
    if "enable_notifications" in sig_raw:
        sig.enable_notifications = bool(sig_raw["enable_notifications"])

    glob_raw = data.get("global_settings") or {}
    glob = GlobalSettings()
    if "enable_alerts" in glob_raw:
        glob.enable_alerts = bool(glob_raw["enable_alerts"])
    for name in ("max_alerts_per_day", "auto_resolve_after_days"):
        if name in glob_raw:
            val = _number(glob_raw[name], errors, f"global_settings.{name}", int)
            if val is not None:
                if val < 1:
                    errors.append(f"global_settings.{name}: must be >= 1, got {val}")
                setattr(glob, name, val)

    if errors:
        raise ValidationError(errors)

    return AlertConfiguration(
        drawdown_limits=drawdowns,
        performance_milestones=milestones,
        market_condition_thresholds=mkt,
        statistical_significance_settings=sig,
        global_settings=glob,
    )


def merge_configuration(base, changes):
    """Apply a partial update: list sections are replaced, mapping sections merged key by key."""
    merged = base.to_dict()
    for section, value in (changes or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(section), dict):
            merged[section] = {**merged[section], **value}
        else:
            merged[section] = value
    return merged


class ThresholdStore:
    """Holds each user's AlertConfiguration, falling back to YAML defaults."""

    def __init__(self, defaults_path=DEFAULT_ALERT_DEFAULTS, db=None):
        self.defaults_path = Path(defaults_path)
        self.db = db
        self._configs = {}
        self._lock = threading.Lock()
        self.defaults = self.load_defaults()

    def load_defaults(self):
        if not self.defaults_path.exists():
            logger.warning(f"Alert defaults file not found: {self.defaults_path}")
            return AlertConfiguration()
        with open(self.defaults_path) as f:
            data = yaml.safe_load(f) or {}
        config = parse_configuration(data.get("alert_configuration", {}))
        logger.info(f"Loaded default thresholds: {len(config.drawdown_limits)} drawdown, "
                    f"{len(config.performance_milestones)} milestone")
        return config

    def get(self, user_id):
        """Return the user's configuration (a copy callers may not mutate back into the store)."""
        with self._lock:
            config = self._configs.get(user_id)
            if config is None:
                config = self._load_persisted(user_id) or copy.deepcopy(self.defaults)
                self._configs[user_id] = config
            return copy.deepcopy(config)

    def update(self, user_id, changes):
        """Validate and apply a partial or full configuration update."""
        if isinstance(changes, AlertConfiguration):
            changes = changes.to_dict()
        current = self.get(user_id)
        config = parse_configuration(merge_configuration(current, changes))
        with self._lock:
            self._configs[user_id] = config
        if self.db is not None:
            self.db.save_configuration(user_id, config.to_dict())
        logger.info(f"Updated alert thresholds for {user_id}: {', '.join(sorted(changes or {}))}")
        return copy.deepcopy(config)

    def users(self):
        with self._lock:
            known = set(self._configs)
        if self.db is not None:
            known.update(self.db.list_users())
        return sorted(known)

    def _load_persisted(self, user_id):
        if self.db is None:
            return None
        data = self.db.load_configuration(user_id)
        if data is None:
            return None
        try:
            return parse_configuration(data)
        except ValidationError as e:
            logger.warning(f"Stored configuration for {user_id} is invalid, using defaults: {e}")
            return None
