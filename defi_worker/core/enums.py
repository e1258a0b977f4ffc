"""Shared enumerations used across models, repositories and jobs.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class AlertType(str, Enum):
    """What an alert observes."""

    PRICE = "price"
    APR = "apr"
    ALLOWANCE = "allowance"


class AlertStatus(str, Enum):
    """Lifecycle state of an alert. Only ACTIVE alerts are evaluated."""

    ACTIVE = "active"
    PAUSED = "paused"
    TRIGGERED_COOLDOWN = "triggered-cooldown"


class Comparator(str, Enum):
    """Direction of an alert threshold. Both directions are strict."""

    ABOVE = "above"
    BELOW = "below"


class NotificationChannel(str, Enum):
    """Delivery channel for alert notifications."""

    EMAIL = "email"
    TELEGRAM = "telegram"
    WEBHOOK = "webhook"


class JobTrigger(str, Enum):
    """Why a job run was started."""

    STARTUP = "startup"
    INTERVAL = "interval"
    MANUAL = "manual"
