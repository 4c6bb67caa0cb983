"""
Module: connectors.notifier

Notification delivery. The engine treats notify() as fire-and-forget;
LogNotifier writes each notification to the log and keeps a copy for
inspection.
"""

import logging

from models.actions import Notification
from models.enums import NotificationType

logger = logging.getLogger(__name__)

_LEVELS = {
    NotificationType.INFO: logging.INFO,
    NotificationType.REPORT: logging.INFO,
    NotificationType.WARNING: logging.WARNING,
    NotificationType.ERROR: logging.ERROR,
}


class LogNotifier:
    """Notifier that logs instead of emailing."""

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        logger.log(
            _LEVELS.get(notification.type, logging.INFO),
            f"NOTIFICATION [{notification.type.value}]: {notification.subject} - {notification.message}",
        )
        if notification.attachment:
            logger.debug(f"Attachment for '{notification.subject}': {notification.attachment}")
        self.sent.append(notification)
        if len(self.sent) > self.max_history:
            self.sent = self.sent[-self.max_history :]
