"""User notification channels."""

from photo_jobs.notifications.base import LoggingNotifier, Notifier
from photo_jobs.notifications.telegram import TelegramNotifier

__all__ = ["LoggingNotifier", "Notifier", "TelegramNotifier"]
