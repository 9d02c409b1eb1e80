"""Batch run completion reconciliation."""

from typing import Optional

import structlog

from case_archiver.history_store import HistoryStore
from case_archiver.models import ArchiveStatus, BatchRun
from utils.logging import get_logger


class CompletionReconciler:
    """Marks batch runs COMPLETED once every attempt they own is COMPLETED.

    Runs are never moved back to NOT_COMPLETED.
    """

    def __init__(
        self,
        history_store: HistoryStore,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.history_store = history_store
        self.logger = logger or get_logger("reconciler")

    async def reconcile_run(self, batch_run: BatchRun) -> BatchRun:
        """Recompute the status of a run after its pages were processed.

        Args:
            batch_run: Run to reconcile

        Returns:
            The run with its current status
        """
        if batch_run.is_completed:
            return batch_run

        if await self.history_store.all_attempts_completed(batch_run.id):
            await self.history_store.mark_batch_run_completed(batch_run.id)
            batch_run = batch_run.model_copy(update={"status": ArchiveStatus.COMPLETED})

        self.logger.info(
            "Batch run reconciled",
            batch_run_id=batch_run.id,
            status=batch_run.status.value,
        )
        return batch_run

    async def sweep(self) -> list[int]:
        """Complete earlier runs whose attempts have since all been completed.

        Attempts of an earlier run are resolved when a later run supersedes them,
        so such runs are checked again after every run.

        Returns:
            IDs of the runs marked COMPLETED by this sweep
        """
        completed = []
        for batch_run in await self.history_store.list_batch_runs(ArchiveStatus.NOT_COMPLETED):
            if await self.history_store.all_attempts_completed(batch_run.id):
                await self.history_store.mark_batch_run_completed(batch_run.id)
                completed.append(batch_run.id)
                self.logger.info(
                    "Earlier batch run is now completed",
                    batch_run_id=batch_run.id,
                    start=batch_run.start.isoformat(),
                    end=batch_run.end.isoformat(),
                )
        return completed
