"""Batch run orchestration: planning, fetching, archiving and reconciliation."""

import time
from collections.abc import Callable
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import structlog
from prometheus_client import CollectorRegistry

from case_archiver.archive_sink import ArchiveSinkClient
from case_archiver.case_source import CaseExportClient
from case_archiver.config import ArchiverConfig
from case_archiver.database import DatabaseManager
from case_archiver.document_archiver import DocumentArchiver
from case_archiver.exceptions import ArchiverError, ConflictError, NotFoundError
from case_archiver.fetch_driver import PagedFetchDriver
from case_archiver.history_store import HistoryStore, InMemoryHistoryStore, PostgresHistoryStore
from case_archiver.locking import LockManager
from case_archiver.metadata import MetadataBuilder
from case_archiver.metrics import ArchiverMetrics
from case_archiver.models import ArchiveAttempt, ArchiveStatus, BatchRun, BatchTrigger
from case_archiver.notification_manager import ArchiveNotifier
from case_archiver.property_lookup import PropertyLookupClient
from case_archiver.reconciler import CompletionReconciler
from case_archiver.window_planner import WindowPlanner
from utils.logging import get_logger, run_context


class ArchiverService:
    """Runs batch archivals of closed cases, one at a time.

    Every run holds the run lock from planning until the completion sweep.
    Collaborators are built from configuration unless passed in.
    """

    def __init__(
        self,
        config: ArchiverConfig,
        history_store: Optional[HistoryStore] = None,
        source: Optional[CaseExportClient] = None,
        sink: Optional[ArchiveSinkClient] = None,
        property_lookup: Optional[PropertyLookupClient] = None,
        notifier: Optional[ArchiveNotifier] = None,
        lock_manager: Optional[LockManager] = None,
        metrics: Optional[ArchiverMetrics] = None,
        now: Callable[[], datetime] = datetime.now,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize archiver service.

        Args:
            config: Archiver configuration
            history_store: Optional history store (built from config if omitted)
            source: Optional case export client
            sink: Optional archive client
            property_lookup: Optional property register client
            notifier: Optional notifier
            lock_manager: Optional run lock manager
            metrics: Optional metrics collector
            now: Clock used for scheduled windows and upper bounds
            logger: Optional logger instance
        """
        self.config = config
        self.now = now
        self.logger = logger or get_logger("service")

        self.db_manager: Optional[DatabaseManager] = (
            DatabaseManager(config.database, logger=self.logger) if config.database else None
        )

        if metrics is None and config.monitoring.metrics_enabled:
            metrics = ArchiverMetrics(logger=self.logger, registry=CollectorRegistry())
        self.metrics = metrics

        self.history_store = history_store or self._build_history_store()
        self.lock_manager = lock_manager or self._build_lock_manager()

        self.source = source or CaseExportClient(
            base_url=config.case_source.base_url,
            timeout_seconds=config.case_source.timeout_seconds,
            retry=config.case_source.retry,
            logger=self.logger,
        )
        self.sink = sink or ArchiveSinkClient(
            base_url=config.archive.base_url,
            timeout_seconds=config.archive.timeout_seconds,
            retry=config.archive.retry,
            logger=self.logger,
        )
        if property_lookup is None and config.property_lookup is not None:
            property_lookup = PropertyLookupClient(
                base_url=config.property_lookup.base_url,
                timeout_seconds=config.property_lookup.timeout_seconds,
                retry=config.property_lookup.retry,
                logger=self.logger,
            )
        self.property_lookup = property_lookup
        self.notifier = notifier or ArchiveNotifier(
            config.notifications, metrics=self.metrics, logger=self.logger
        )

        self.planner = WindowPlanner(self.history_store, logger=self.logger)
        self.reconciler = CompletionReconciler(self.history_store, logger=self.logger)
        self.document_archiver = DocumentArchiver(
            history_store=self.history_store,
            source=self.source,
            sink=self.sink,
            metadata_builder=MetadataBuilder(
                organisation=config.archive.archive_creator, logger=self.logger
            ),
            archive_url_template=config.archive.archive_url_template,
            property_lookup=self.property_lookup,
            notifier=self.notifier,
            metrics=self.metrics,
            logger=self.logger,
        )
        self.fetch_driver = PagedFetchDriver(
            source=self.source,
            archiver=self.document_archiver,
            closed_status=config.case_source.closed_status,
            closing_event_type=config.case_source.closing_event_type,
            page_increment=timedelta(hours=config.case_source.page_increment_hours),
            metrics=self.metrics,
            now=self.now,
            logger=self.logger,
        )

    def _build_history_store(self) -> HistoryStore:
        if self.config.history.storage_type == "memory":
            return InMemoryHistoryStore(logger=self.logger)
        return PostgresHistoryStore(self.db_manager, logger=self.logger)

    def _build_lock_manager(self) -> LockManager:
        scheduler = self.config.scheduler
        return LockManager(
            lock_type=scheduler.lock_type,
            lock_ttl_seconds=scheduler.lock_ttl_seconds,
            heartbeat_interval_seconds=scheduler.heartbeat_interval_seconds,
            db_manager=self.db_manager,
            lock_file_dir=Path(scheduler.lock_file_dir) if scheduler.lock_file_dir else None,
            logger=self.logger,
        )

    async def initialize(self) -> None:
        """Prepare the history store."""
        await self.history_store.initialize()

    def start_metrics_server(self) -> None:
        """Expose metrics over HTTP if monitoring is enabled (failures are non-critical)."""
        if not self.metrics:
            return
        port = self.config.monitoring.metrics_port
        try:
            self.metrics.start_metrics_server(port=port)
        except Exception as e:
            self.logger.warning(
                "Failed to start metrics server (non-critical)",
                port=port,
                error=str(e),
            )

    def scheduled_window(self) -> tuple[date, date]:
        """Window of a scheduled run: lookback_days ago through yesterday."""
        today = self.now().date()
        return today - timedelta(days=self.config.scheduler.lookback_days), today - timedelta(days=1)

    async def run_scheduled(self) -> Optional[dict[str, Any]]:
        start, end = self.scheduled_window()
        return await self.run_batch(start, end, BatchTrigger.SCHEDULED)

    async def run_batch(
        self, start: date, end: date, trigger: BatchTrigger
    ) -> Optional[dict[str, Any]]:
        """Plan and execute a batch run.

        Args:
            start: Requested first day (inclusive)
            end: Requested last day (inclusive)
            trigger: What started the run

        Returns:
            Run statistics, or None if a scheduled run was redundant

        Raises:
            ValueError: If start is after end
            LockError: If another run holds the run lock
            SourceError: If the case source fails; the run stays NOT_COMPLETED
        """
        if start > end:
            raise ValueError(f"start ({start}) must not be after end ({end})")

        self.logger.info(
            "Batch requested",
            trigger=trigger.value,
            start=start.isoformat(),
            end=end.isoformat(),
        )

        async with self.lock_manager.hold(self.config.scheduler.lock_key):
            batch_run = await self.planner.plan(start, end, trigger)
            if batch_run is None:
                if self.metrics:
                    self.metrics.record_run_status("skipped")
                return None
            return await self._execute(batch_run)

    async def rerun_batch(self, batch_run_id: int) -> dict[str, Any]:
        """Execute a NOT_COMPLETED batch run again over its stored window.

        Raises:
            NotFoundError: If the batch run does not exist
            ConflictError: If the batch run is already COMPLETED
            LockError: If another run holds the run lock
        """
        self.logger.info("Rerun requested", batch_run_id=batch_run_id)

        async with self.lock_manager.hold(self.config.scheduler.lock_key):
            batch_run = await self.history_store.get_batch_run(batch_run_id)
            if batch_run is None:
                raise NotFoundError(
                    f"Batch run {batch_run_id} not found",
                    context={"batch_run_id": batch_run_id},
                )
            if batch_run.is_completed:
                raise ConflictError(
                    f"Batch run {batch_run_id} is already completed and cannot be rerun",
                    context={"batch_run_id": batch_run_id},
                )
            return await self._execute(batch_run)

    async def _execute(self, batch_run: BatchRun) -> dict[str, Any]:
        with run_context(batch_run_id=batch_run.id, trigger=batch_run.trigger.value):
            return await self._execute_bound(batch_run)

    async def _execute_bound(self, batch_run: BatchRun) -> dict[str, Any]:
        started = time.monotonic()
        self.logger.info(
            "Batch run started",
            start=batch_run.start.isoformat(),
            end=batch_run.end.isoformat(),
        )

        try:
            stats = await self.fetch_driver.run(batch_run)
        except ArchiverError as e:
            self.logger.error("Batch run aborted, run stays NOT_COMPLETED", error=str(e))
            if self.metrics:
                self.metrics.record_run_status("failure", time.monotonic() - started)
            raise

        batch_run = await self.reconciler.reconcile_run(batch_run)
        reconciled = await self.reconciler.sweep()

        status = batch_run.status
        if self.metrics:
            self.metrics.record_run_status(status.value.lower(), time.monotonic() - started)

        stats.update(
            {
                "batch_run_id": batch_run.id,
                "start": batch_run.start.isoformat(),
                "end": batch_run.end.isoformat(),
                "trigger": batch_run.trigger.value,
                "status": status.value,
                "reconciled_runs": reconciled,
            }
        )
        self.logger.info(
            "Batch run finished",
            **{k: v for k, v in stats.items() if k not in ("batch_run_id", "trigger")},
        )
        return stats

    async def list_batch_runs(self, status: Optional[ArchiveStatus] = None) -> list[BatchRun]:
        return await self.history_store.list_batch_runs(status)

    async def list_attempts(
        self,
        batch_run_id: Optional[int] = None,
        status: Optional[ArchiveStatus] = None,
    ) -> list[ArchiveAttempt]:
        return await self.history_store.list_attempts(batch_run_id=batch_run_id, status=status)

    async def close(self) -> None:
        """Close remote clients and the history store."""
        for client in (self.source, self.sink, self.property_lookup):
            if client is not None:
                await client.close()
        await self.notifier.close()
        await self.history_store.close()
