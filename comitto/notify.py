"""Structured (message, severity) events for whoever displays them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .config import NotificationSettings

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Topic(str, Enum):
    COMMIT = "commit"
    PUSH = "push"
    ERROR = "error"
    TRIGGER = "trigger"
    GENERAL = "general"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Notification:
    message: str
    severity: Severity = Severity.INFO
    topic: Topic = Topic.GENERAL
    created_at: float = field(default_factory=time.time)


Listener = Callable[[Notification], None]


class Notifier:
    """Fans notifications out to listeners, honouring user preferences.

    Every notification is logged whether or not it is shown; the
    preferences only decide which ones reach the listeners.
    """

    def __init__(self, settings: Optional[NotificationSettings] = None) -> None:
        self.settings = settings or NotificationSettings()
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _wanted(self, note: Notification) -> bool:
        prefs = self.settings
        if not prefs.show_notifications:
            return False
        if note.topic is Topic.COMMIT:
            return prefs.on_commit
        if note.topic is Topic.PUSH:
            return prefs.on_push
        if note.topic is Topic.TRIGGER:
            return prefs.on_trigger_fired
        if note.topic is Topic.ERROR or note.severity is Severity.ERROR:
            return prefs.on_error
        return True

    def emit(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        topic: Topic = Topic.GENERAL,
    ) -> Notification:
        note = Notification(message=message, severity=severity, topic=topic)
        logger.log(_LOG_LEVELS[severity], "%s", message)
        if self._wanted(note):
            for listener in list(self._listeners):
                try:
                    listener(note)
                except Exception:  # noqa: BLE001 - a broken display must not stop the engine
                    logger.exception("Notification listener failed")
        return note

    def info(self, message: str, topic: Topic = Topic.GENERAL) -> Notification:
        return self.emit(message, Severity.INFO, topic)

    def warning(self, message: str, topic: Topic = Topic.GENERAL) -> Notification:
        return self.emit(message, Severity.WARNING, topic)

    def error(self, message: str, topic: Topic = Topic.ERROR) -> Notification:
        return self.emit(message, Severity.ERROR, topic)
