import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from groupdate.sweeper import _wait_or_timeout, run_phase_sweeper, start_phase_sweeper


@pytest.mark.asyncio
async def test_wait_returns_false_on_timeout():
    assert await _wait_or_timeout(asyncio.Event(), 0.01) is False


@pytest.mark.asyncio
async def test_wait_returns_true_when_stopped():
    stop = asyncio.Event()
    stop.set()
    assert await _wait_or_timeout(stop, 5) is True


@pytest.mark.asyncio
async def test_sweeper_runs_until_stopped():
    stop = asyncio.Event()
    service = MagicMock()
    calls = []

    async def sweep():
        calls.append(1)
        if len(calls) == 3:
            stop.set()
        return {"checked": 0}

    service.sweep_due_transitions = AsyncMock(side_effect=sweep)
    await asyncio.wait_for(run_phase_sweeper(service, stop, interval_sec=0.01), timeout=2)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_sweeper_survives_failures():
    stop = asyncio.Event()
    service = MagicMock()
    calls = []

    async def sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("db down")
        stop.set()
        return {}

    service.sweep_due_transitions = AsyncMock(side_effect=sweep)
    await asyncio.wait_for(run_phase_sweeper(service, stop, interval_sec=0.01), timeout=2)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_start_phase_sweeper_task_stops_cleanly():
    stop = asyncio.Event()
    service = MagicMock()
    service.sweep_due_transitions = AsyncMock(return_value={})
    task = start_phase_sweeper(service, stop, 60)
    await asyncio.sleep(0)
    stop.set()
    await asyncio.wait_for(task, timeout=2)
    assert task.done()
    assert task.get_name() == "phase-sweeper"
