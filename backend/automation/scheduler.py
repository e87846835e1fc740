"""Recurring timers for SCHEDULE-triggered automations.

Schedule expressions map onto a fixed table of intervals; this is not a
cron parser. Each automation has at most one armed timer. Every tick
starts its run as a separate task, so a slow run does not delay the
next tick.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from core.exceptions import InvalidScheduleError

logger = structlog.get_logger(__name__)

SCHEDULE_INTERVALS: Dict[str, float] = {
    "* * * * *": 60,
    "@minutely": 60,
    "0 * * * *": 3_600,
    "@hourly": 3_600,
    "0 0 * * *": 86_400,
    "@daily": 86_400,
    "0 0 * * 1": 604_800,
    "@weekly": 604_800,
}

SCHEDULE_CONFIG_KEYS = ("cron", "schedule")


def schedule_expression(trigger_config: Dict[str, Any]) -> Optional[str]:
    for key in SCHEDULE_CONFIG_KEYS:
        value = trigger_config.get(key)
        if value:
            return value
    return None


def parse_schedule(expression: Optional[str], intervals: Optional[Dict[str, float]] = None) -> float:
    """Interval in seconds for a schedule expression.

    Raises:
        InvalidScheduleError: If the expression is missing or not in the table
    """
    table = intervals if intervals is not None else SCHEDULE_INTERVALS
    normalized = " ".join(expression.split()) if isinstance(expression, str) else None
    if normalized not in table:
        raise InvalidScheduleError(expression, sorted(table))
    return table[normalized]


class AutomationScheduler:
    """Owns the asyncio timer tasks, keyed by automation id."""

    def __init__(
        self,
        callback: Callable[[str], Awaitable[Any]],
        intervals: Optional[Dict[str, float]] = None,
    ):
        self._callback = callback
        self.intervals = dict(intervals) if intervals is not None else dict(SCHEDULE_INTERVALS)
        self._timers: Dict[str, asyncio.Task] = {}
        self._in_flight: Set[asyncio.Task] = set()

    def validate(self, trigger_config: Dict[str, Any]) -> float:
        return parse_schedule(schedule_expression(trigger_config), self.intervals)

    def arm(self, automation_id: str, trigger_config: Dict[str, Any]) -> float:
        """Start (or restart) the timer for an automation. Must run inside an event loop."""
        interval = self.validate(trigger_config)
        self.disarm(automation_id)
        self._timers[automation_id] = asyncio.get_running_loop().create_task(
            self._tick_loop(automation_id, interval),
            name=f"automation-timer-{automation_id}",
        )
        logger.info("Schedule armed", automation_id=automation_id, interval_seconds=interval)
        return interval

    def disarm(self, automation_id: str) -> bool:
        task = self._timers.pop(automation_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info("Schedule disarmed", automation_id=automation_id)
        return True

    def is_armed(self, automation_id: str) -> bool:
        task = self._timers.get(automation_id)
        return task is not None and not task.done()

    @property
    def armed_count(self) -> int:
        return sum(1 for task in self._timers.values() if not task.done())

    async def _tick_loop(self, automation_id: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            run = asyncio.create_task(self._fire(automation_id))
            self._in_flight.add(run)
            run.add_done_callback(self._in_flight.discard)

    async def _fire(self, automation_id: str) -> None:
        try:
            await self._callback(automation_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Scheduled run failed", automation_id=automation_id, error=str(e))

    async def shutdown(self) -> None:
        """Cancel every timer and every scheduled run still in flight."""
        tasks = list(self._timers.values()) + list(self._in_flight)
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped", cancelled=len(tasks))
