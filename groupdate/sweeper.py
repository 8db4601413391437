"""Background deadline sweep.

Events past their vote deadline that nobody opens would otherwise sit in VOTE
forever; this loop applies their due transitions on an interval.
"""

import asyncio
import contextlib
import logging

from groupdate.scheduling import SchedulingService

logger = logging.getLogger(__name__)


async def _wait_or_timeout(stop_event: asyncio.Event, timeout: float) -> bool:
    """Return True if stopped, False if the interval elapsed."""
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    return stop_event.is_set()


async def run_phase_sweeper(
    service: SchedulingService,
    stop_event: asyncio.Event,
    interval_sec: float = 60.0,
) -> None:
    logger.info("Phase sweeper started (interval=%ss)", interval_sec)
    while not stop_event.is_set():
        try:
            await service.sweep_due_transitions()
        except Exception:
            logger.exception("Phase sweep failed; retrying next interval")
        if await _wait_or_timeout(stop_event, interval_sec):
            break
    logger.info("Phase sweeper stopped")


def start_phase_sweeper(
    service: SchedulingService,
    stop_event: asyncio.Event,
    interval_sec: float,
) -> asyncio.Task:
    return asyncio.create_task(run_phase_sweeper(service, stop_event, interval_sec), name="phase-sweeper")
