"""
Pass scheduler.

Fires a pass immediately on start and then on every time matched by the
configured cron pattern (six fields, seconds first, as in
``0 */15 * * * *``), or every N seconds aligned to wall-clock multiples
of N.
"""

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from croniter import croniter

from pinning.errors import ConfigurationMissing

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = "0 */15 * * * *"


def croniter_expression(pattern: str) -> str:
    """Move a leading seconds field to the end, where croniter expects it."""
    fields = pattern.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    return " ".join(fields)


def parse_period(value: Union[int, str, None]) -> Union[int, str]:
    """
    Validate a configured pinning period.

    Accepts a number of seconds, or a cron pattern with five fields or six
    fields (seconds first).

    Returns:
        Seconds as an int, or the normalized cron pattern

    Raises:
        ConfigurationMissing: If the value cannot be interpreted
    """
    if value is None:
        return DEFAULT_PERIOD

    if isinstance(value, bool):
        raise ConfigurationMissing(f"Unsupported pinning period: {value!r}")

    if isinstance(value, int):
        seconds = value
    elif isinstance(value, str) and value.strip().isdigit():
        seconds = int(value.strip())
    elif isinstance(value, str):
        pattern = " ".join(value.split())
        if len(pattern.split()) not in (5, 6) or not croniter.is_valid(croniter_expression(pattern)):
            raise ConfigurationMissing(f"Unsupported pinning period: {value!r}")
        return pattern
    else:
        raise ConfigurationMissing(f"Unsupported pinning period: {value!r}")

    if seconds <= 0:
        raise ConfigurationMissing(f"Pinning period must be positive: {value!r}")

    return seconds


class Scheduler:
    """
    Runs a pass function on a cron or fixed-period schedule.

    Exceptions from a pass are logged and never stop the schedule. A tick
    that arrives while the previous pass is still running is skipped.
    """

    def __init__(
        self,
        pass_fn: Callable[[], Union[Awaitable[object], object]],
        period: Union[float, str] = DEFAULT_PERIOD,
        align: bool = True,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize scheduler.

        Args:
            pass_fn: Callable run on every tick, without arguments; awaited
                when it returns an awaitable
            period: Cron pattern (see ``parse_period``) or seconds between ticks
            align: Align second-based ticks to wall-clock multiples of the period
            clock: Wall-clock source
        """
        self.pass_fn = pass_fn
        if isinstance(period, str):
            self.cron: Optional[str] = period
            self.period: Optional[float] = None
        else:
            self.cron = None
            self.period = period
        self.align = align
        self.clock = clock

        self.passes_started = 0
        self.skipped_ticks = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._current is not None and not self._current.done()

    def start(self):
        """Start firing passes; the first one fires immediately."""
        if self.running:
            return
        self._loop_task = asyncio.create_task(self._run(), name="pinning-scheduler")
        schedule = f"'{self.cron}'" if self.cron else f"every {self.period}s"
        logger.info(f"🚀 Scheduler started ({schedule})")

    async def stop(self):
        """Stop ticking and wait for the pass in progress."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await self.wait_idle()
        logger.info("Scheduler stopped")

    async def wait_idle(self):
        """Wait for the pass in progress, if any."""
        if self._current is not None:
            await asyncio.wait([self._current])

    def seconds_until_next_tick(self) -> float:
        now = self.clock()
        if self.cron is not None:
            # Cron patterns are matched in local time
            start = datetime.fromtimestamp(now).astimezone()
            next_run = croniter(croniter_expression(self.cron), start).get_next(float)
            return max(0.0, next_run - now)
        if not self.align:
            return self.period
        return self.period - (now % self.period)

    def tick(self) -> Optional[asyncio.Task]:
        """
        Fire one pass unless the previous one is still running.

        Returns:
            The pass task, or None if the tick was skipped
        """
        if self.busy:
            self.skipped_ticks += 1
            logger.warning("Previous pass still running, skipping this tick")
            return None

        self.passes_started += 1
        self._current = asyncio.create_task(
            self._guarded_pass(self.passes_started),
            name=f"pass-{self.passes_started}"
        )
        return self._current

    async def _guarded_pass(self, number: int):
        started = time.monotonic()
        try:
            result = self.pass_fn()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Pass {number} failed: {e}", exc_info=True)
        else:
            logger.info(f"Pass {number} finished in {time.monotonic() - started:.1f}s")

    async def _run(self):
        while True:
            self.tick()
            await asyncio.sleep(self.seconds_until_next_tick())
