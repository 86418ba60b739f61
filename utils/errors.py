"""Exception hierarchy for the alert engine."""


class AlertError(Exception):
    """Base class for alert engine errors."""


class NotFoundError(AlertError, KeyError):
    """Unknown alert id (or an alert owned by another user)."""

    def __init__(self, alert_id):
        self.alert_id = alert_id
        super().__init__(f"Alert not found: {alert_id}")

    def __str__(self):
        return self.args[0]


class ValidationError(AlertError, ValueError):
    """Malformed alert configuration or notification preferences."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class InvalidTransitionError(AlertError):
    """Lifecycle transition out of a terminal state."""


class DuplicateAlertError(AlertError):
    """An equivalent alert is already open."""

    def __init__(self, existing_id):
        self.existing_id = existing_id
        super().__init__(f"Equivalent open alert exists: {existing_id}")


class RateLimited(AlertError):
    """Daily alert cap reached for a user."""


class DispatchFailure(AlertError):
    """A notification channel failed to deliver."""
