"""Digest queue: alerts held for daily or weekly summary delivery."""
import json
import logging
from collections import defaultdict

from models.alerts import StrategyAlert
from models.enums import FrequencyBucket, NotificationChannel
from utils.formatters import format_alert_line

logger = logging.getLogger("stratalerts.digest")

SUBJECTS = {
    FrequencyBucket.DAILY: "Daily strategy alert digest",
    FrequencyBucket.WEEKLY: "Weekly strategy alert digest",
}


def format_digest(bucket, alerts):
    """Build (subject, text) for a batch of alerts, most severe first."""
    bucket = FrequencyBucket(bucket)
    ordered = sorted(alerts, key=lambda a: (-a.severity.rank, a.created_at))
    subject = f"{SUBJECTS.get(bucket, 'Strategy alert digest')} ({len(ordered)})"
    lines = [format_alert_line(a) for a in ordered]
    return subject, "\n".join(lines)


class DigestQueue:
    def __init__(self, db):
        self.db = db

    def enqueue(self, user_id, alert, channel, bucket):
        bucket = FrequencyBucket(bucket)
        if bucket == FrequencyBucket.IMMEDIATE:
            raise ValueError("Immediate notifications are dispatched, not queued")
        entry_id = self.db.enqueue_digest(user_id, alert, NotificationChannel(channel).value, bucket.value)
        logger.debug(f"Queued {alert.id} for {bucket.value} digest ({user_id}, {channel})")
        return entry_id

    def pending(self, bucket, user_id=None):
        """Pending entries grouped by (user_id, channel)."""
        groups = defaultdict(list)
        for row in self.db.get_pending_digest(FrequencyBucket(bucket).value, user_id):
            alert = StrategyAlert.from_dict(json.loads(row["payload"]))
            groups[(row["user_id"], NotificationChannel(row["channel"]))].append((row["id"], alert))
        return dict(groups)

    def flush(self, bucket, send, user_id=None):
        """Send one digest per (user, channel) through ``send(user_id, channel, subject, text)``.

        Entries are marked sent only when ``send`` returns True, so a failed
        channel is retried on the next flush. Returns the number of digests sent.
        """
        sent = 0
        for (uid, channel), entries in self.pending(bucket, user_id).items():
            subject, text = format_digest(bucket, [alert for _, alert in entries])
            try:
                delivered = send(uid, channel, subject, text)
            except Exception as e:
                logger.warning(f"Digest send failed for {uid} on {channel.value}: {e}")
                delivered = False
            if delivered:
                self.db.mark_digest_sent([entry_id for entry_id, _ in entries])
                sent += 1
        if sent:
            logger.info(f"Flushed {sent} {FrequencyBucket(bucket).value} digest(s)")
        return sent
