"""Alert notification delivery."""

from .dispatcher import NotificationDispatcher, Notifier, format_alert_message

__all__ = ["NotificationDispatcher", "Notifier", "format_alert_message"]
