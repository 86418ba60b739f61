"""Strategy alert engine: runs evaluators, de-duplicates, persists and notifies."""
import copy
import logging
import threading
import weakref
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from alerts import evaluators
from alerts.correlation import NullCorrelationDetector
from alerts.metrics import MetricsAggregator
from alerts.notifications import NotificationResolver
from alerts.store import AlertStore
from models.enums import AlertType, SignificanceMilestone, Timeframe
from utils.errors import DuplicateAlertError, RateLimited

logger = logging.getLogger("stratalerts.alerts.engine")


class StrategyAlertEngine:
    """Public alert API.

    All evaluation and lifecycle work for one user runs under that user's
    lock, so concurrent performance updates cannot open two alerts for the
    same condition. Persistence and dispatch are handed to ``executor`` and
    never block the evaluation path; with no executor they run inline.
    """

    def __init__(self, thresholds, preferences, store=None, resolver=None, dispatcher=None,
                 db=None, digest_queue=None, correlation_detector=None, metrics=None,
                 executor=None, clock=None):
        self.thresholds = thresholds
        self.preferences = preferences
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.store = store or AlertStore(clock=self._clock)
        self.resolver = resolver or NotificationResolver(clock=self._clock)
        self.dispatcher = dispatcher
        self.db = db
        self.digest_queue = digest_queue
        self.correlation_detector = correlation_detector or NullCorrelationDetector()
        self.metrics = metrics or MetricsAggregator(clock=self._clock)
        self.executor = executor
        # entries vanish once no caller holds the lock
        self._user_locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # ── Plumbing ────────────────────────────────────────

    def _user_lock(self, user_id):
        with self._locks_guard:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = self._user_locks[user_id] = threading.RLock()
            return lock

    def _submit(self, fn, *args):
        if self.executor is None:
            self._run_safely(fn, *args)
        else:
            self.executor.submit(self._run_safely, fn, *args)

    @staticmethod
    def _run_safely(fn, *args):
        try:
            fn(*args)
        except Exception as e:
            logger.warning(f"Background task {getattr(fn, '__name__', fn)} failed: {e}")

    def _persist(self, alert):
        if self.db is not None:
            self._submit(self.db.save_alert, copy.deepcopy(alert))

    def _evaluate(self, name, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            logger.error(f"{name} evaluator failed: {e}")
            return []

    def _check_daily_cap(self, user_id, config):
        today = self._clock().astimezone(timezone.utc).date()
        cap = config.global_settings.max_alerts_per_day
        if self.store.count_created_on(user_id, today) >= cap:
            raise RateLimited(f"{user_id} reached {cap} alerts for {today}")

    def _admit(self, user_id, candidates, config):
        """Dedup, cap and store candidates. Caller holds the user lock."""
        changed = []
        for alert in candidates:
            alert.user_id = user_id
            existing = self.store.find_open(user_id, *alert.condition_key)
            if existing is not None:
                escalated = None
                if alert.severity.rank > existing.severity.rank:
                    escalated = self.store.escalate(existing.id, alert.severity, source=alert)
                if escalated is not None:
                    self._persist(escalated)
                    changed.append(escalated)
                else:
                    logger.debug(f"Skipping duplicate of open alert {existing.id}")
                continue
            try:
                self._check_daily_cap(user_id, config)
                self.store.create(alert)
            except RateLimited as e:
                logger.warning(f"Dropping {alert.type.value} alert for {alert.strategy_id}: {e}")
                continue
            except DuplicateAlertError as e:
                logger.debug(str(e))
                continue
            self._persist(alert)
            changed.append(alert)
        return changed

    def _run(self, user_id, evaluate):
        """evaluate(config) -> candidates, then admit and notify."""
        with self._user_lock(user_id):
            config = self.thresholds.get(user_id)
            candidates = evaluate(config)
            changed = self._admit(user_id, candidates, config)
        for alert in changed:
            self.send_notification(alert, user_id)
        return changed

    # ── Evaluation ──────────────────────────────────────

    def monitor_drawdown_limits(self, user_id, strategy, performance):
        return self._run(user_id, lambda config: self._evaluate(
            "Drawdown", evaluators.evaluate_drawdown, strategy, performance, config, now=self._clock()))

    def check_performance_milestones(self, user_id, strategy, previous, current):
        return self._run(user_id, lambda config: self._evaluate(
            "Milestone", evaluators.evaluate_milestones, strategy, previous, current, config,
            now=self._clock()))

    def detect_market_condition_changes(self, user_id, strategies, market_data, performances=None):
        return self._run(user_id, lambda config: self._evaluate(
            "Market condition", evaluators.evaluate_market_conditions, strategies, market_data, config,
            performances=performances, now=self._clock()))

    def _reached_milestones(self, user_id, strategy_id):
        reached = set()
        for alert in self.store.get_all(user_id):
            if alert.strategy_id != strategy_id or alert.type != AlertType.STATISTICAL_SIGNIFICANCE:
                continue
            names = alert.metadata.get("milestonesReached") or [alert.metadata.get("milestone")]
            reached.update(SignificanceMilestone(name) for name in names if name)
        return reached

    def check_statistical_significance(self, user_id, strategy, performance):
        return self._run(user_id, lambda config: self._evaluate(
            "Statistical significance", evaluators.evaluate_statistical_significance,
            strategy, performance, config, reached=self._reached_milestones(user_id, strategy.id),
            now=self._clock()))

    def detect_correlated_performance_issues(self, user_id, strategies, performances=None):
        return self._run(user_id, lambda config: self._evaluate(
            "Correlation", self.correlation_detector.detect, strategies, performances or {}, config,
            now=self._clock()))

    def process_performance_update(self, user_id, strategy, current, previous=None):
        """Run every per-strategy evaluator for one recalculated snapshot."""
        changed = self.monitor_drawdown_limits(user_id, strategy, current)
        if previous is not None:
            changed += self.check_performance_milestones(user_id, strategy, previous, current)
        changed += self.check_statistical_significance(user_id, strategy, current)
        return changed

    # ── Lifecycle ───────────────────────────────────────

    def acknowledge_alert(self, alert_id, user_id):
        with self._user_lock(user_id):
            alert = self.store.acknowledge(alert_id, user_id)
            self._persist(alert)
        logger.info(f"Alert {alert_id} acknowledged by {user_id}")
        return alert

    def resolve_alert(self, alert_id, user_id, reason=None):
        with self._user_lock(user_id):
            alert = self.store.resolve(alert_id, user_id, reason=reason)
            self._persist(alert)
        logger.info(f"Alert {alert_id} {alert.status.value.lower()} by {user_id}")
        return alert

    def dismiss_alert(self, alert_id, user_id, reason="dismissed"):
        with self._user_lock(user_id):
            alert = self.store.resolve(alert_id, user_id, reason=reason, dismiss=True)
            self._persist(alert)
        logger.info(f"Alert {alert_id} dismissed by {user_id}")
        return alert

    def record_alert_action(self, alert_id, user_id, action):
        with self._user_lock(user_id):
            alert = self.store.record_action(alert_id, user_id, action)
            self._persist(alert)
        return alert

    def auto_resolve_alerts(self, user_id, now=None):
        """Resolve alerts idle for the user's autoResolveAfterDays. Called by the scheduler."""
        with self._user_lock(user_id):
            days = self.thresholds.get(user_id).global_settings.auto_resolve_after_days
            resolved = self.store.auto_resolve(user_id, days, now=now or self._clock())
            for alert in resolved:
                self._persist(alert)
        return resolved

    # ── Queries ─────────────────────────────────────────

    def get_active_alerts(self, user_id, strategy_id=None):
        return self.store.get_active(user_id, strategy_id)

    def get_all_alerts(self, user_id):
        return self.store.get_all(user_id)

    def get_alert_metrics(self, user_id, timeframe=Timeframe.WEEK):
        return self.metrics.compute(self.store.get_all(user_id), Timeframe(timeframe))

    def known_users(self):
        return sorted(set(self.store.users()) | set(self.thresholds.users()))

    # ── Settings ────────────────────────────────────────

    def get_alert_configuration(self, user_id):
        return self.thresholds.get(user_id)

    def get_notification_preferences(self, user_id):
        return self.preferences.get(user_id)

    def update_alert_thresholds(self, user_id, changes):
        with self._user_lock(user_id):
            return self.thresholds.update(user_id, changes)

    def update_notification_preferences(self, user_id, changes):
        with self._user_lock(user_id):
            return self.preferences.update(user_id, changes)

    # ── Notification ────────────────────────────────────

    def send_notification(self, alert, user_id):
        """Route one alert: immediate decisions go to dispatch, the rest to the digest queue.

        With a digest queue, alerts silenced by quiet hours are held for the
        next digest instead of being dropped.
        """
        preferences = self.preferences.get(user_id)
        config = self.thresholds.get(user_id)
        now = self._clock()
        decisions = self.resolver.resolve(alert, preferences, config, now=now)
        if not decisions:
            if self.digest_queue is None:
                return []
            held = self.resolver.held_for_quiet_hours(alert, preferences, config, now=now)
            if held:
                logger.info(f"Quiet hours: holding {alert.id} for the {held[0].bucket.value} digest")
            self._defer(held, alert, user_id)
            return held
        if self.dispatcher is not None:
            self.dispatcher.dispatch(decisions, alert, user_id)
        self._defer([d for d in decisions if not d.deliver_now], alert, user_id)
        return decisions

    def _defer(self, decisions, alert, user_id):
        for decision in decisions:
            if self.digest_queue is None:
                logger.info(f"No digest queue; dropping {decision.bucket.value} "
                            f"{decision.channel.value} notification for {alert.id}")
                continue
            self._submit(self.digest_queue.enqueue, user_id, copy.deepcopy(alert),
                         decision.channel, decision.bucket)

    # ── Setup ───────────────────────────────────────────

    def load_persisted(self):
        if self.db is not None:
            alerts = self.db.get_alerts()
            self.store.load(alerts)
            logger.info(f"Restored {len(alerts)} alerts from storage")

    def shutdown(self, wait=True):
        if self.executor is not None:
            self.executor.shutdown(wait=wait)


def build_engine(config, db=None, digest_queue=None, dispatcher=None):
    """Wire an engine from app config."""
    from config import resolve_defaults_path
    from alerts.channels import build_dispatcher
    from alerts.correlation import ReturnCorrelationDetector
    from alerts.preferences import PreferencesStore
    from alerts.thresholds import ThresholdStore

    workers = int(config.get("engine", {}).get("max_workers", 0))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stratalerts") if workers else None
    defaults = resolve_defaults_path(config)
    engine = StrategyAlertEngine(
        thresholds=ThresholdStore(defaults, db=db),
        preferences=PreferencesStore(defaults, db=db),
        dispatcher=dispatcher or build_dispatcher(config, executor=executor),
        db=db,
        digest_queue=digest_queue,
        correlation_detector=ReturnCorrelationDetector.from_config(config),
        executor=executor,
    )
    engine.load_persisted()
    return engine
