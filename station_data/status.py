"""Progress reporting and cooperative cancellation for long-running operations"""

import threading
from typing import Callable, List, Optional

import structlog

logger = structlog.get_logger()


class StatusReporter:
    """Shared between a worker running an import or download and whoever watches it.

    The worker reports status and messages, the watcher may call cancel().
    Cancellation is checked by the worker between files and between
    network reads.
    """

    def __init__(self, on_status: Optional[Callable[[str], None]] = None):
        self._cancelled = threading.Event()
        self.on_status = on_status
        self.status = ""
        self.messages: List[str] = []
        self.percent_done: Optional[int] = None

    def cancel(self):
        self._cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def report_status(self, status: str):
        self.status = status
        if self.on_status is not None:
            self.on_status(status)

    def report_progress(self, percent: int):
        self.percent_done = percent
        self.report_status(f"Downloading, {percent}% done")

    def log_message(self, message: str):
        self.messages.append(message)
        logger.info(message)
