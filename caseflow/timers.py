"""Wait-step timeout watcher."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

TimeoutCallback = Callable[[str, str], Awaitable[object]]


class TimeoutScheduler:
    """Run one asyncio task per scheduled wait-step timeout.

    ``timeoutMinutes`` is multiplied by ``unit_seconds`` so tests can run
    timers in fractions of a second. Firing simply calls the callback; the
    callback is responsible for checking that the step is still waiting.
    """

    def __init__(self, unit_seconds: float = 60.0) -> None:
        self.unit_seconds = unit_seconds
        self._tasks: Dict[str, Dict[str, asyncio.Task]] = {}

    def schedule(
        self,
        instance_id: str,
        step_instance_id: str,
        timeout_minutes: float,
        callback: TimeoutCallback,
    ) -> asyncio.Task:
        delay = float(timeout_minutes) * self.unit_seconds
        self.cancel(instance_id, step_instance_id)
        task = asyncio.create_task(
            self._fire(instance_id, step_instance_id, delay, callback),
            name=f"caseflow-timeout-{step_instance_id}",
        )
        self._tasks.setdefault(instance_id, {})[step_instance_id] = task
        logger.debug(f"Scheduled timeout for step {step_instance_id} in {delay}s")
        return task

    async def _fire(
        self,
        instance_id: str,
        step_instance_id: str,
        delay: float,
        callback: TimeoutCallback,
    ) -> None:
        try:
            await asyncio.sleep(delay)
            await callback(instance_id, step_instance_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Timeout handling failed for step {step_instance_id}: {exc}")
        finally:
            tasks = self._tasks.get(instance_id, {})
            if tasks.get(step_instance_id) is asyncio.current_task():
                del tasks[step_instance_id]
                if not tasks:
                    self._tasks.pop(instance_id, None)

    def pending(self, instance_id: str) -> list[str]:
        """Step instance ids with a timer still waiting."""
        return [sid for sid, task in self._tasks.get(instance_id, {}).items() if not task.done()]

    def cancel(self, instance_id: str, step_instance_id: str) -> None:
        task = self._tasks.get(instance_id, {}).pop(step_instance_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def cancel_for_instance(self, instance_id: str) -> int:
        """Drop every timer of an instance; returns how many were cancelled."""
        tasks = self._tasks.pop(instance_id, {})
        current = asyncio.current_task()
        cancelled = 0
        for task in tasks.values():
            if task is not current and not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    async def close(self) -> None:
        tasks = [task for group in self._tasks.values() for task in group.values()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
