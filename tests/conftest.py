"""Shared test fixtures."""
import os
import sys
import pytest
import tempfile

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timezone, timedelta

from models.database import Database
from models.performance import StrategyInfo, StrategyPerformance
from alerts.thresholds import ThresholdStore
from alerts.preferences import PreferencesStore
from alerts.channels import NotificationDispatcher, InAppChannel
from alerts.engine import StrategyAlertEngine
from models.enums import NotificationChannel

# Mid-afternoon UTC: outside the default 22:00-08:00 quiet hours
NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    db = Database(db_path)
    db.connect()
    yield db
    db.close()
    os.unlink(db_path)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def strategy():
    return StrategyInfo(id="s1", title="Breakout", is_active=True, methodology="momentum")


@pytest.fixture
def performance():
    """A healthy, not-yet-significant snapshot."""
    return StrategyPerformance(
        total_trades=18,
        max_drawdown=3.0,
        profit_factor=1.6,
        expectancy=12.5,
        sharpe_ratio=1.1,
        win_rate=54.0,
    )


@pytest.fixture
def inbox():
    return InAppChannel()


@pytest.fixture
def engine(clock, inbox):
    """Engine with default thresholds, inline execution and an in-app inbox."""
    dispatcher = NotificationDispatcher({NotificationChannel.IN_APP: [inbox]})
    return StrategyAlertEngine(ThresholdStore(), PreferencesStore(), dispatcher=dispatcher, clock=clock)
