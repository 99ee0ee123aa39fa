from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntervalJob:
    name: str
    fn: Callable[[], object]
    interval_s: float
    first_delay_s: float = 0.0


class IntervalScheduler:
    """
    One daemon thread per job: a delayed first run, then a fixed interval.
    Jobs never overlap with themselves; a job that raises is logged and
    rescheduled, never allowed to kill its thread.
    """

    def __init__(self) -> None:
        self.jobs: List[IntervalJob] = []
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    def add(self, name: str, fn: Callable[[], object], interval_s: float, first_delay_s: float = 0.0) -> None:
        self.jobs.append(IntervalJob(name, fn, interval_s, first_delay_s))

    def _loop(self, job: IntervalJob) -> None:
        delay = job.first_delay_s
        while not self._stop.wait(delay):
            try:
                job.fn()
            except Exception:
                logger.exception("Job %s raised", job.name)
            delay = job.interval_s

    def start(self) -> None:
        for job in self.jobs:
            t = threading.Thread(target=self._loop, args=(job,), name=job.name, daemon=True)
            t.start()
            self._threads.append(t)
            logger.info(
                "%s started (first run in %.0fs, every %.0fs)", job.name, job.first_delay_s, job.interval_s
            )

    def stop(self, timeout_s: float = 5.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout=timeout_s)

    def wait(self) -> None:
        """Blocks until stop() is called (or KeyboardInterrupt)."""
        while not self._stop.wait(1.0):
            pass
