"""Transient user notices (toasts) shared by every controller."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Deque, List

logger = logging.getLogger(__name__)


class ToastLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    ToastLevel.SUCCESS: logging.INFO,
    ToastLevel.INFO: logging.INFO,
    ToastLevel.WARNING: logging.WARNING,
    ToastLevel.ERROR: logging.ERROR,
}


@dataclass
class Toast:
    level: ToastLevel
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """Bounded queue of toasts; views drain it after each interaction."""

    def __init__(self, max_toasts: int = 20):
        self._toasts: Deque[Toast] = deque(maxlen=max_toasts)

    def push(self, level: ToastLevel, message: str) -> Toast:
        toast = Toast(level=level, message=message)
        self._toasts.append(toast)
        logger.log(_LOG_LEVELS[level], "toast[%s] %s", level.value, message)
        return toast

    def success(self, message: str) -> Toast:
        return self.push(ToastLevel.SUCCESS, message)

    def info(self, message: str) -> Toast:
        return self.push(ToastLevel.INFO, message)

    def warning(self, message: str) -> Toast:
        return self.push(ToastLevel.WARNING, message)

    def error(self, message: str) -> Toast:
        return self.push(ToastLevel.ERROR, message)

    @property
    def toasts(self) -> List[Toast]:
        return list(self._toasts)

    def drain(self) -> List[Toast]:
        pending = list(self._toasts)
        self._toasts.clear()
        return pending

    def messages(self, level: ToastLevel | None = None) -> List[str]:
        return [t.message for t in self._toasts if level is None or t.level == level]
