"""Strategy alert system."""
from alerts.engine import StrategyAlertEngine, build_engine
from alerts.store import AlertStore
from alerts.thresholds import ThresholdStore
from alerts.preferences import PreferencesStore
from alerts.notifications import NotificationResolver, NotificationDecision
from alerts.channels import NotificationDispatcher, InAppChannel, ConsoleChannel, FileChannel
