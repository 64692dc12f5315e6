"""
Notification sinks

Where alert notifications and asynchronous results go. Messaging channels
implement NotificationSink; the logging sink is the default.
"""

from typing import Dict, List, Optional, Protocol, Tuple

from loguru import logger


class NotificationSink(Protocol):
    async def notify(self, session_id: str, message: str, data: Optional[Dict] = None):
        ...


class LoggingNotificationSink:
    """Writes notifications to the log"""

    async def notify(self, session_id: str, message: str, data: Optional[Dict] = None):
        logger.info(f"📣 [{session_id}] {message}")


class CollectingNotificationSink:
    """Keeps notifications in memory, e.g. for a polling web client"""

    def __init__(self):
        self.messages: List[Tuple[str, str, Dict]] = []

    async def notify(self, session_id: str, message: str, data: Optional[Dict] = None):
        self.messages.append((session_id, message, data or {}))

    def for_session(self, session_id: str) -> List[str]:
        return [m for s, m, _ in self.messages if s == session_id]
