"""Per-user notification preferences: parsing, validation and storage."""
import copy
import logging
import re
import threading
import yaml
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import DEFAULT_ALERT_DEFAULTS
from models.config import NotificationPreferences, QuietHours, NotificationFrequency
from models.enums import AlertType, AlertSeverity, NotificationChannel, FrequencyBucket
from alerts.thresholds import parse_enum
from utils.errors import ValidationError

logger = logging.getLogger("stratalerts.alerts.preferences")

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def _parse_enum_list(enum_cls, raw, errors, where):
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        errors.append(f"{where}: expected a list, got {raw!r}")
        return []
    parsed = []
    for i, item in enumerate(raw):
        value = parse_enum(enum_cls, item, errors, f"{where}[{i}]")
        if value is not None and value not in parsed:
            parsed.append(value)
    return parsed


def _parse_quiet_hours(raw, errors):
    qh = QuietHours(
        enabled=bool(raw.get("enabled", False)),
        start=str(raw.get("start", "22:00")),
        end=str(raw.get("end", "08:00")),
        timezone=str(raw.get("timezone", "UTC")),
    )
    for name in ("start", "end"):
        if not _TIME_RE.match(getattr(qh, name)):
            errors.append(f"quiet_hours.{name}: expected HH:MM, got {getattr(qh, name)!r}")
    try:
        ZoneInfo(qh.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"quiet_hours.timezone: unknown timezone {qh.timezone!r}")
    return qh


def parse_preferences(data, user_id=""):
    """Build NotificationPreferences from a plain dict, raising ValidationError on any problem."""
    data = data or {}
    errors = []

    channels = {}
    for raw_type, raw_channels in (data.get("channels") or {}).items():
        alert_type = parse_enum(AlertType, raw_type, errors, "channels")
        if alert_type is not None:
            channels[alert_type] = _parse_enum_list(NotificationChannel, raw_channels, errors,
                                                    f"channels.{raw_type}")

    freq_raw = data.get("frequency") or {}
    unknown_buckets = set(freq_raw) - {b.value for b in FrequencyBucket}
    if unknown_buckets:
        errors.append(f"frequency: unknown buckets {', '.join(sorted(unknown_buckets))}")
    frequency = NotificationFrequency(**{
        b.value: _parse_enum_list(AlertType, freq_raw.get(b.value), errors, f"frequency.{b.value}")
        for b in FrequencyBucket
    })

    severity_filters = {}
    for raw_channel, raw_sevs in (data.get("severity_filters") or {}).items():
        channel = parse_enum(NotificationChannel, raw_channel, errors, "severity_filters")
        if channel is not None:
            severity_filters[channel] = _parse_enum_list(AlertSeverity, raw_sevs, errors,
                                                         f"severity_filters.{raw_channel}")

    quiet_hours = _parse_quiet_hours(data.get("quiet_hours") or {}, errors)

    if errors:
        raise ValidationError(errors)

    return NotificationPreferences(
        user_id=user_id or data.get("user_id", ""),
        channels=channels,
        quiet_hours=quiet_hours,
        frequency=frequency,
        severity_filters=severity_filters,
    )


class PreferencesStore:
    """Holds each user's NotificationPreferences, falling back to YAML defaults."""

    def __init__(self, defaults_path=DEFAULT_ALERT_DEFAULTS, db=None):
        self.defaults_path = Path(defaults_path)
        self.db = db
        self._prefs = {}
        self._lock = threading.Lock()
        self._default_data = self._load_default_data()

    def _load_default_data(self):
        if not self.defaults_path.exists():
            logger.warning(f"Alert defaults file not found: {self.defaults_path}")
            return NotificationPreferences().to_dict()
        with open(self.defaults_path) as f:
            data = yaml.safe_load(f) or {}
        prefs = data.get("notification_preferences")
        if prefs is None:
            return NotificationPreferences().to_dict()
        parse_preferences(prefs)
        return prefs

    def defaults_for(self, user_id):
        return parse_preferences(copy.deepcopy(self._default_data), user_id=user_id)

    def get(self, user_id):
        with self._lock:
            prefs = self._prefs.get(user_id)
            if prefs is None:
                prefs = self._load_persisted(user_id) or self.defaults_for(user_id)
                self._prefs[user_id] = prefs
            return copy.deepcopy(prefs)

    def update(self, user_id, changes):
        """Validate and apply a partial update; top-level sections are replaced wholesale."""
        if isinstance(changes, NotificationPreferences):
            changes = changes.to_dict()
        merged = self.get(user_id).to_dict()
        merged.update({k: v for k, v in (changes or {}).items() if k != "user_id"})
        prefs = parse_preferences(merged, user_id=user_id)
        with self._lock:
            self._prefs[user_id] = prefs
        if self.db is not None:
            self.db.save_preferences(user_id, prefs.to_dict())
        logger.info(f"Updated notification preferences for {user_id}")
        return copy.deepcopy(prefs)

    def _load_persisted(self, user_id):
        if self.db is None:
            return None
        data = self.db.load_preferences(user_id)
        if data is None:
            return None
        try:
            return parse_preferences(data, user_id=user_id)
        except ValidationError as e:
            logger.warning(f"Stored preferences for {user_id} are invalid, using defaults: {e}")
            return None
