"""
Periodic task scheduler.

A PeriodicTask fires a callable every ``interval`` seconds on a timer
thread and runs each tick on its own worker thread:

- allow_overlap=False (detection): a tick that fires while the previous
  run is still busy is skipped, never queued.
- allow_overlap=True (sync): ticks run freely and may overlap.

Exceptions raised by the callable are logged and never stop the timer.
"""

import threading
from typing import Callable, Optional

from .logging_config import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Cancellable fixed-interval task."""

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], object],
        allow_overlap: bool = False
    ):
        if interval <= 0:
            raise ValueError(f'interval must be positive, got {interval}')

        self.name = name
        self.interval = interval
        self.func = func
        self.allow_overlap = allow_overlap

        self.runs = 0
        self.skipped = 0
        self.failures = 0

        self._busy = threading.Lock()
        self._counter_lock = threading.Lock()
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _invoke(self) -> None:
        try:
            self.func()
        except Exception as e:
            with self._counter_lock:
                self.failures += 1
            logger.error(f'Task {self.name} failed: {e}', exc_info=True)
        finally:
            with self._counter_lock:
                self.runs += 1

    def tick(self) -> bool:
        """
        Run one tick in the calling thread.

        Returns:
            False if the tick was skipped because a run is still in progress
        """
        if self.allow_overlap:
            self._invoke()
            return True

        if not self._busy.acquire(blocking=False):
            with self._counter_lock:
                self.skipped += 1
            logger.debug(f'Task {self.name} still running, tick skipped')
            return False

        try:
            self._invoke()
        finally:
            self._busy.release()
        return True

    def _run(self) -> None:
        while not self._stop_flag.wait(self.interval):
            worker = threading.Thread(
                target=self.tick,
                daemon=True,
                name=f'{self.name}-tick'
            )
            worker.start()

    def start(self) -> None:
        """Start the timer thread."""
        if self.is_alive():
            logger.debug(f'Task {self.name} already running')
            return

        self._stop_flag.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        logger.info(f'Started {self.name} every {self.interval}s')

    def cancel(self, timeout: float = 5.0) -> None:
        """Stop firing new ticks; runs already in progress finish on their own."""
        self._stop_flag.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info(f'Stopped {self.name}')

    def is_alive(self) -> bool:
        """Check if the timer thread is alive."""
        return self._thread is not None and self._thread.is_alive()
