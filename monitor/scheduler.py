"""Background scheduler for auto-resolution and digest delivery."""
import logging
import threading
import schedule
import time

from models.enums import FrequencyBucket

logger = logging.getLogger("stratalerts.scheduler")

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class AlertScheduler:
    def __init__(self, engine, digest_queue=None, settings=None):
        self.engine = engine
        self.digest_queue = digest_queue
        self.settings = settings or {}
        self._schedule = schedule.Scheduler()
        self._thread = None
        self._running = False
        self._consecutive_failures = 0

    def _register_jobs(self):
        s = self.settings
        self._schedule.every().day.at(s.get("auto_resolve_time", "00:05")).do(self.auto_resolve_job)
        if self.digest_queue is None:
            return
        self._schedule.every().day.at(s.get("daily_digest_time", "08:00")).do(
            self.flush_job, FrequencyBucket.DAILY)
        day = str(s.get("weekly_digest_day", "sunday")).lower()
        if day not in WEEKDAYS:
            raise ValueError(f"Invalid weekly_digest_day: {day}")
        getattr(self._schedule.every(), day).at(s.get("weekly_digest_time", "09:00")).do(
            self.flush_job, FrequencyBucket.WEEKLY)

    @property
    def jobs(self):
        return list(self._schedule.jobs)

    def start(self):
        """Start background jobs."""
        if self._running:
            return
        self._running = True
        self._register_jobs()
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started ({len(self._schedule.jobs)} jobs)")

    def stop(self):
        """Stop background jobs."""
        self._running = False
        self._schedule.clear()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Scheduler stopped")

    def _run_loop(self):
        while self._running:
            self._schedule.run_pending()
            time.sleep(1)

    def auto_resolve_job(self):
        total = 0
        for user_id in self.engine.known_users():
            try:
                total += len(self.engine.auto_resolve_alerts(user_id))
            except Exception as e:
                logger.warning(f"Auto-resolve failed for {user_id}: {e}")
        if total:
            logger.info(f"Auto-resolved {total} stale alert(s)")
        return total

    def flush_job(self, bucket):
        if self.digest_queue is None or self.engine.dispatcher is None:
            return 0
        try:
            sent = self.digest_queue.flush(bucket, self.engine.dispatcher.send_digest)
            self._consecutive_failures = 0
            return sent
        except Exception as e:
            self._consecutive_failures += 1
            logger.error(f"Digest flush failed ({self._consecutive_failures} consecutive): {e}")
            if self._consecutive_failures >= 5:
                logger.critical("5+ consecutive digest flush failures!")
            return 0
