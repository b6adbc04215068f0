import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

SUCCESS = "success"
INFO = "info"
WARNING = "warning"
ERROR = "error"

_LOG_LEVELS = {SUCCESS: logging.INFO, INFO: logging.INFO, WARNING: logging.WARNING, ERROR: logging.ERROR}


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    order_id: Optional[str] = None


class Notifier:
    """Collects user-facing notices and forwards them to an optional listener."""

    def __init__(self, listener: Callable[[Notice], None] = None):
        self.listener = listener
        self._notices: List[Notice] = []
        self._lock = threading.Lock()

    def notify(self, level: str, message: str, order_id: str = None) -> Notice:
        notice = Notice(level, message, order_id)
        with self._lock:
            self._notices.append(notice)
        logger.log(_LOG_LEVELS.get(level, logging.INFO), "%s%s", message, f" (order {order_id})" if order_id else "")
        if self.listener is not None:
            self.listener(notice)
        return notice

    @property
    def notices(self) -> List[Notice]:
        with self._lock:
            return list(self._notices)
