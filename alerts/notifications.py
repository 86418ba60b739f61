"""Notification routing: which channels hear about an alert, and when."""
import logging
from dataclasses import dataclass
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from models.enums import AlertSeverity, FrequencyBucket, NotificationChannel

logger = logging.getLogger("stratalerts.alerts.notifications")


@dataclass(frozen=True)
class NotificationDecision:
    channel: NotificationChannel
    deliver_now: bool
    bucket: FrequencyBucket


def _parse_hhmm(value):
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def in_quiet_hours(quiet_hours, now):
    """True when ``now`` falls in [start, end) in the user's timezone; the window may wrap midnight."""
    if not quiet_hours.enabled:
        return False
    start = _parse_hhmm(quiet_hours.start)
    end = _parse_hhmm(quiet_hours.end)
    if start == end:
        return False
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(ZoneInfo(quiet_hours.timezone)).time().replace(second=0, microsecond=0)
    if start < end:
        return start <= local < end
    return local >= start or local < end


class NotificationResolver:
    """Pure routing logic. Never performs I/O."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _candidates(alert, preferences):
        return [c for c in preferences.channels.get(alert.type, [])
                if alert.severity in preferences.severity_filters.get(c, [])]

    @staticmethod
    def _overrides_quiet_hours(alert, bucket):
        # unlisted types resolve to the immediate bucket too
        return bucket == FrequencyBucket.IMMEDIATE and alert.severity == AlertSeverity.CRITICAL

    def resolve(self, alert, preferences, config, now=None):
        if not config.global_settings.enable_alerts:
            return []

        now = now or self._clock()
        candidates = self._candidates(alert, preferences)
        if not candidates:
            return []

        bucket = preferences.frequency.bucket_for(alert.type)
        if in_quiet_hours(preferences.quiet_hours, now) and not self._overrides_quiet_hours(alert, bucket):
            logger.debug(f"Quiet hours: suppressing {alert.id} for {preferences.user_id}")
            return []

        deliver_now = bucket == FrequencyBucket.IMMEDIATE
        return [NotificationDecision(channel=c, deliver_now=deliver_now, bucket=bucket) for c in candidates]

    def held_for_quiet_hours(self, alert, preferences, config, now=None):
        """Digest decisions for an alert that quiet hours kept off every channel.

        Immediate types move to the daily digest, batched types keep their
        bucket. Empty outside quiet hours or when the alert overrides them.
        """
        if not config.global_settings.enable_alerts:
            return []
        now = now or self._clock()
        if not in_quiet_hours(preferences.quiet_hours, now):
            return []
        bucket = preferences.frequency.bucket_for(alert.type)
        if self._overrides_quiet_hours(alert, bucket):
            return []
        if bucket == FrequencyBucket.IMMEDIATE:
            bucket = FrequencyBucket.DAILY
        return [NotificationDecision(channel=c, deliver_now=False, bucket=bucket)
                for c in self._candidates(alert, preferences)]
