"""Utility modules for the strategy alert engine."""
from utils.logger import setup_logging
from utils.formatters import format_rate, format_hours, format_alert_line, time_ago
from utils.errors import AlertError, NotFoundError, ValidationError, InvalidTransitionError
