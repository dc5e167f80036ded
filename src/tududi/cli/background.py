# src/tududi/cli/background.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from ..core.state import AppState
from ..tasks.task_scheduler import run_recurrence_scheduler

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SchedulerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    task: asyncio.Task[None]

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.task.cancel)
        except RuntimeError:
            logger.debug("Scheduler loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_scheduler_in_background(state: AppState) -> SchedulerBackgroundRunner | None:
    """
    Start the recurrence scheduler in a background thread.

    The console REPL blocks on input(), so the scheduler gets its own thread
    and event loop.
    """
    settings = state.settings
    if not getattr(settings, "scheduler_enabled", True):
        logger.info("Recurrence scheduler disabled, not starting.")
        return None

    interval = float(getattr(settings, "scheduler_interval_seconds", 300.0))
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        task = loop.create_task(run_recurrence_scheduler(state.task_store, interval_seconds=interval))

        holder["loop"] = loop
        holder["task"] = task
        ready.set()

        try:
            with contextlib.suppress(asyncio.CancelledError):
                loop.run_until_complete(task)
        finally:
            loop.close()

    t = threading.Thread(target=runner, name="recurrence-scheduler", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    task = holder.get("task")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(task, asyncio.Task):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    logger.info("Recurrence scheduler started (interval=%.0fs).", interval)
    return SchedulerBackgroundRunner(thread=t, loop=loop, task=task)
