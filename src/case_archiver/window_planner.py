"""Effective date window planning for batch runs."""

from datetime import date, timedelta
from typing import Optional

import structlog

from case_archiver.history_store import HistoryStore
from case_archiver.models import BatchRun, BatchTrigger
from utils.logging import get_logger


class WindowPlanner:
    """Decides which window a new batch run covers, and whether it runs at all.

    Manual requests are taken verbatim. Scheduled requests are compared with the
    most recently completed run: a request that ends on or before it is
    redundant and skipped, and a request that would leave a gap after it is
    pulled back to start the day after it ended.
    """

    def __init__(
        self,
        history_store: HistoryStore,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize window planner.

        Args:
            history_store: Store holding batch run history
            logger: Optional logger instance
        """
        self.history_store = history_store
        self.logger = logger or get_logger("window_planner")

    async def plan(self, start: date, end: date, trigger: BatchTrigger) -> Optional[BatchRun]:
        """Plan and persist a batch run for the requested window.

        Args:
            start: Requested first day (inclusive)
            end: Requested last day (inclusive)
            trigger: What started the run

        Returns:
            The persisted NOT_COMPLETED batch run, or None when a scheduled
            request is already covered by a completed run
        """
        if trigger == BatchTrigger.SCHEDULED:
            latest = await self.history_store.latest_completed_batch_run()

            if latest is not None:
                if end <= latest.end:
                    self.logger.info(
                        "Requested window already covered, skipping run",
                        requested_start=start.isoformat(),
                        requested_end=end.isoformat(),
                        latest_batch_run_id=latest.id,
                        latest_end=latest.end.isoformat(),
                    )
                    return None

                day_after_latest = latest.end + timedelta(days=1)
                if start > day_after_latest:
                    self.logger.info(
                        "Gap after latest completed run, moving start back",
                        requested_start=start.isoformat(),
                        adjusted_start=day_after_latest.isoformat(),
                        latest_batch_run_id=latest.id,
                    )
                    start = day_after_latest

        batch_run = await self.history_store.create_batch_run(start, end, trigger)
        self.logger.info(
            "Batch run created",
            batch_run_id=batch_run.id,
            start=start.isoformat(),
            end=end.isoformat(),
            trigger=trigger.value,
        )
        return batch_run
