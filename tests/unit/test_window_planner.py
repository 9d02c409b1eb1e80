"""Unit tests for window planning."""

from datetime import date

import pytest

from case_archiver.history_store import InMemoryHistoryStore
from case_archiver.models import ArchiveStatus, BatchTrigger
from case_archiver.window_planner import WindowPlanner


async def _completed_run(store: InMemoryHistoryStore, start: date, end: date) -> None:
    run = await store.create_batch_run(start, end, BatchTrigger.SCHEDULED)
    await store.mark_batch_run_completed(run.id)


@pytest.mark.asyncio
async def test_first_run_uses_requested_window(history_store: InMemoryHistoryStore) -> None:
    """Test a scheduled request with no history is taken as is."""
    planner = WindowPlanner(history_store)

    run = await planner.plan(date(2024, 5, 13), date(2024, 5, 19), BatchTrigger.SCHEDULED)

    assert run.start == date(2024, 5, 13)
    assert run.end == date(2024, 5, 19)
    assert run.status == ArchiveStatus.NOT_COMPLETED
    assert run.trigger == BatchTrigger.SCHEDULED


@pytest.mark.asyncio
async def test_scheduled_run_skipped_when_covered(history_store: InMemoryHistoryStore) -> None:
    """Test no run is created when the request ends on or before the latest completed run."""
    await _completed_run(history_store, date(2024, 5, 13), date(2024, 5, 19))
    planner = WindowPlanner(history_store)

    assert await planner.plan(date(2024, 5, 13), date(2024, 5, 19), BatchTrigger.SCHEDULED) is None
    assert await planner.plan(date(2024, 5, 1), date(2024, 5, 10), BatchTrigger.SCHEDULED) is None
    assert len(await history_store.list_batch_runs()) == 1


@pytest.mark.asyncio
async def test_scheduled_gap_moves_start_back(history_store: InMemoryHistoryStore) -> None:
    """Test a gap after the latest completed run is closed by moving the start."""
    await _completed_run(history_store, date(2024, 5, 7), date(2024, 5, 13))
    planner = WindowPlanner(history_store)

    run = await planner.plan(date(2024, 5, 19), date(2024, 5, 19), BatchTrigger.SCHEDULED)

    assert run.start == date(2024, 5, 14)
    assert run.end == date(2024, 5, 19)


@pytest.mark.asyncio
async def test_scheduled_overlap_keeps_start(history_store: InMemoryHistoryStore) -> None:
    """Test an overlapping request keeps its requested start."""
    await _completed_run(history_store, date(2024, 5, 7), date(2024, 5, 13))
    planner = WindowPlanner(history_store)

    run = await planner.plan(date(2024, 5, 10), date(2024, 5, 19), BatchTrigger.SCHEDULED)

    assert run.start == date(2024, 5, 10)


@pytest.mark.asyncio
async def test_scheduled_adjacent_window_unchanged(history_store: InMemoryHistoryStore) -> None:
    """Test a request starting the day after the latest run is not adjusted."""
    await _completed_run(history_store, date(2024, 5, 7), date(2024, 5, 13))
    planner = WindowPlanner(history_store)

    run = await planner.plan(date(2024, 5, 14), date(2024, 5, 20), BatchTrigger.SCHEDULED)

    assert run.start == date(2024, 5, 14)


@pytest.mark.asyncio
async def test_not_completed_runs_are_ignored(history_store: InMemoryHistoryStore) -> None:
    """Test only completed runs influence planning."""
    await history_store.create_batch_run(
        date(2024, 5, 1), date(2024, 5, 19), BatchTrigger.SCHEDULED
    )
    planner = WindowPlanner(history_store)

    run = await planner.plan(date(2024, 5, 13), date(2024, 5, 19), BatchTrigger.SCHEDULED)

    assert run is not None
    assert run.start == date(2024, 5, 13)


@pytest.mark.asyncio
async def test_manual_window_is_verbatim(history_store: InMemoryHistoryStore) -> None:
    """Test manual requests bypass skip and gap handling."""
    await _completed_run(history_store, date(2024, 5, 7), date(2024, 5, 13))
    planner = WindowPlanner(history_store)

    covered = await planner.plan(date(2024, 5, 1), date(2024, 5, 3), BatchTrigger.MANUAL)
    gapped = await planner.plan(date(2024, 5, 19), date(2024, 5, 19), BatchTrigger.MANUAL)

    assert (covered.start, covered.end) == (date(2024, 5, 1), date(2024, 5, 3))
    assert (gapped.start, gapped.end) == (date(2024, 5, 19), date(2024, 5, 19))
    assert covered.trigger == BatchTrigger.MANUAL
