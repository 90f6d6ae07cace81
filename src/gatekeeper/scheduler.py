"""Cooperative timer facility.

Each scheduled task runs on its own daemon thread and waits on an Event, so
cancelling wakes it immediately. Timing is best-effort.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Cancellable handle for a repeating or one-shot task."""

    def __init__(
        self,
        task: Callable[[], object],
        *,
        interval: float,
        repeat: bool,
        name: str,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._task = task
        self._interval = interval
        self._repeat = repeat
        self._name = name
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._task()
            except Exception:
                # A failing run must not kill the timer.
                logger.exception("Scheduled task %s failed", self._name)
            self.runs += 1
            if not self._repeat:
                self._stop.set()


class Scheduler(Protocol):
    def every(self, interval: float, task: Callable[[], object], *, name: str = ...) -> ScheduledTask:  # pragma: no cover
        ...

    def once(self, delay: float, task: Callable[[], object], *, name: str = ...) -> ScheduledTask:  # pragma: no cover
        ...

    def cancel_all(self) -> None:  # pragma: no cover
        ...


class ThreadScheduler:
    """Scheduler backed by one daemon thread per task."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: list[ScheduledTask] = []

    def _submit(self, task: ScheduledTask) -> ScheduledTask:
        with self._lock:
            self._tasks = [t for t in self._tasks if not t.cancelled]
            self._tasks.append(task)
        task.start()
        return task

    def every(self, interval: float, task: Callable[[], object], *, name: str = "gatekeeper-timer") -> ScheduledTask:
        return self._submit(ScheduledTask(task, interval=interval, repeat=True, name=name))

    def once(self, delay: float, task: Callable[[], object], *, name: str = "gatekeeper-timer") -> ScheduledTask:
        return self._submit(ScheduledTask(task, interval=delay, repeat=False, name=name))

    def cancel_all(self) -> None:
        with self._lock:
            tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
