from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

log = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class Notification:
    message: str
    type: str = SUCCESS
    duration: Optional[float] = None
    action: Optional[Callable[[], Any]] = None
    action_label: Optional[str] = None


class Notifier(Protocol):
    def show(
        self,
        message: str,
        *,
        type: str = SUCCESS,
        duration: Optional[float] = None,
        action: Optional[Callable[[], Any]] = None,
        action_label: Optional[str] = None,
    ) -> None: ...


class LoggingNotifier:
    """Writes every notification to the ``notify`` logger; errors at WARNING."""

    def __init__(self, logger: logging.Logger | None = None):
        self._log = logger or logging.getLogger("notify")

    def show(self, message, *, type=SUCCESS, duration=None, action=None, action_label=None) -> None:
        try:
            level = logging.WARNING if type == ERROR else logging.INFO
            suffix = f" [{action_label or 'Undo'}]" if action is not None else ""
            self._log.log(level, "%s%s", message, suffix)
        except Exception:
            log.exception("notifier sink failed")


class RecordingNotifier:
    def __init__(self):
        self._lock = threading.Lock()
        self.notifications: list[Notification] = []

    def show(self, message, *, type=SUCCESS, duration=None, action=None, action_label=None) -> None:
        try:
            n = Notification(
                message=str(message or ""),
                type=type,
                duration=duration,
                action=action,
                action_label=action_label,
            )
            with self._lock:
                self.notifications.append(n)
        except Exception:
            log.exception("notifier sink failed")

    @property
    def last(self) -> Optional[Notification]:
        with self._lock:
            return self.notifications[-1] if self.notifications else None

    def messages(self, type: str | None = None) -> list[str]:
        with self._lock:
            return [n.message for n in self.notifications if type is None or n.type == type]
