"""Paged fetching of closed cases over a batch window."""

from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Optional

import structlog

from case_archiver.models import BatchRun, Case, CasePage, DocumentRef
from utils.logging import get_logger

if TYPE_CHECKING:
    from case_archiver.case_source import CaseExportClient
    from case_archiver.document_archiver import DocumentArchiver
    from case_archiver.metrics import ArchiverMetrics

END_OF_DAY = time(23, 59, 59)


class PagedFetchDriver:
    """Walks the case source through a window with a strictly advancing lower bound.

    Each page is fully processed before the bound moves. When the source
    reports no usable page end (absent, or not after the current bound) the
    bound is pushed forward by a fixed increment so a stale source can never
    stall the run.
    """

    def __init__(
        self,
        source: "CaseExportClient",
        archiver: "DocumentArchiver",
        closed_status: str = "Avslutat",
        closing_event_type: str = "ARKIV",
        page_increment: timedelta = timedelta(hours=1),
        metrics: Optional["ArchiverMetrics"] = None,
        now: Callable[[], datetime] = datetime.now,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize fetch driver.

        Args:
            source: Case export client
            archiver: Document archiver handed each closed case
            closed_status: Case status that marks a case as closed
            closing_event_type: Event type whose documents are archived
            page_increment: Forced advance when the source makes no progress
            metrics: Optional metrics collector
            now: Clock used for windows ending today
            logger: Optional logger instance
        """
        if page_increment <= timedelta(0):
            raise ValueError("page_increment must be positive")

        self.source = source
        self.archiver = archiver
        self.closed_status = closed_status
        self.closing_event_type = closing_event_type
        self.page_increment = page_increment
        self.metrics = metrics
        self.now = now
        self.logger = logger or get_logger("fetch_driver")

    def window_bounds(self, start: date, end: date) -> tuple[datetime, datetime]:
        """Convert a date window into (exclusive lower, inclusive upper) timestamps.

        The upper bound is the end of the last day, or the current time when the
        window reaches today.
        """
        lower = datetime.combine(start, time.min)
        current = self.now()
        if end < current.date():
            upper = datetime.combine(end, END_OF_DAY)
        else:
            upper = current
        return lower, upper

    def next_lower_bound(self, lower: datetime, upper: datetime, page: CasePage) -> datetime:
        """Compute the lower bound for the query following ``page``."""
        if page.page_end is None or page.page_end <= lower:
            return min(lower + self.page_increment, upper)
        return min(page.page_end, upper)

    def closing_documents(self, case: Case) -> list[DocumentRef]:
        """Documents attached to the case's closing events."""
        return [
            document
            for event in case.events
            if event.event_type == self.closing_event_type
            for document in event.documents
            if document.document_id
        ]

    def is_closed(self, case: Case) -> bool:
        """Whether the case has the closed status, with or without closing documents."""
        return case.status == self.closed_status

    async def run(self, batch_run: BatchRun) -> dict[str, Any]:
        """Fetch and archive every closed case in the run's window.

        Args:
            batch_run: Batch run owning the attempts created on the way

        Returns:
            Statistics for the run

        Raises:
            SourceError: If the case source fails after its retries
        """
        lower, upper = self.window_bounds(batch_run.start, batch_run.end)
        log = self.logger.bind(batch_run_id=batch_run.id)

        stats: dict[str, Any] = {
            "pages_fetched": 0,
            "cases_processed": 0,
            "documents_archived": 0,
            "documents_failed": 0,
            "documents_skipped": 0,
        }

        # The first query is issued even when the window is already empty
        while True:
            log.info(
                "Fetching case page",
                lower_bound=lower.isoformat(),
                upper_bound=upper.isoformat(),
            )
            page = await self.source.fetch_page(lower, upper)
            stats["pages_fetched"] += 1
            if self.metrics:
                self.metrics.record_page_fetched()

            for case in page.cases:
                if not self.is_closed(case):
                    continue

                # Closed cases without documents still supersede stale attempts
                outcomes = await self.archiver.archive_case(
                    case, self.closing_documents(case), batch_run
                )
                stats["cases_processed"] += 1
                for outcome in outcomes:
                    stats[outcome.stats_key] += 1

            log.debug(
                "Case page processed",
                cases=len(page.cases),
                page_start=page.page_start.isoformat() if page.page_start else None,
                page_end=page.page_end.isoformat() if page.page_end else None,
            )

            lower = self.next_lower_bound(lower, upper, page)
            if lower >= upper:
                break

        return stats
