"""Per-document archival with durable, idempotent bookkeeping."""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Optional

import structlog

from case_archiver.categories import category_for, is_geotechnical
from case_archiver.exceptions import (
    ArchiveError,
    DuplicateAttemptError,
    MetadataError,
    SourceError,
    UnknownFileTypeError,
)
from case_archiver.history_store import HistoryStore
from case_archiver.metadata import MetadataBuilder, with_detected_extension
from case_archiver.models import ArchiveAttempt, BatchRun, Case, DocumentRef, PropertyDescriptor
from utils.logging import get_logger

if TYPE_CHECKING:
    from case_archiver.archive_sink import ArchiveSinkClient
    from case_archiver.case_source import CaseExportClient
    from case_archiver.metrics import ArchiverMetrics
    from case_archiver.notification_manager import ArchiveNotifier
    from case_archiver.property_lookup import PropertyLookupClient

PropertyResolver = Callable[[], Awaitable[Optional[PropertyDescriptor]]]


class DocumentOutcome(str, Enum):
    """What happened to one document during a run."""

    ARCHIVED = "archived"
    FAILED = "failed"
    FORMAT_ERROR = "format_error"
    SKIPPED = "skipped"

    @property
    def stats_key(self) -> str:
        if self == DocumentOutcome.ARCHIVED:
            return "documents_archived"
        if self == DocumentOutcome.SKIPPED:
            return "documents_skipped"
        return "documents_failed"


class DocumentArchiver:
    """Archives the closing documents of a case, once per (document, case) pair.

    An attempt record is persisted before the archive is called. It only turns
    COMPLETED once the archive returned an ID, so a failure or a crash leaves a
    NOT_COMPLETED record that the next run of the same case supersedes.
    """

    def __init__(
        self,
        history_store: HistoryStore,
        source: "CaseExportClient",
        sink: "ArchiveSinkClient",
        metadata_builder: MetadataBuilder,
        archive_url_template: str,
        property_lookup: Optional["PropertyLookupClient"] = None,
        notifier: Optional["ArchiveNotifier"] = None,
        metrics: Optional["ArchiverMetrics"] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize document archiver.

        Args:
            history_store: Store for archive attempts
            source: Case export client used to fetch document content
            sink: Archive client
            metadata_builder: Builds archive metadata per document
            archive_url_template: URL of an archived document, with an {archive_id} placeholder
            property_lookup: Optional property register client
            notifier: Optional notifier for geotechnical and manual-handling mails
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.history_store = history_store
        self.source = source
        self.sink = sink
        self.metadata_builder = metadata_builder
        self.archive_url_template = archive_url_template
        self.property_lookup = property_lookup
        self.notifier = notifier
        self.metrics = metrics
        self.logger = logger or get_logger("document_archiver")

    def archive_url(self, archive_id: str) -> str:
        return self.archive_url_template.replace("{archive_id}", archive_id)

    def _property_resolver(self, case: Case) -> PropertyResolver:
        """Looks up the case's main property at most once, on first use."""
        resolved: dict[str, Optional[PropertyDescriptor]] = {}

        async def resolve() -> Optional[PropertyDescriptor]:
            if "property" not in resolved:
                reference = case.main_property_reference
                if self.property_lookup is None or reference is None:
                    resolved["property"] = None
                else:
                    resolved["property"] = await self.property_lookup.by_reference(reference)
            return resolved["property"]

        return resolve

    async def archive_case(
        self,
        case: Case,
        documents: list[DocumentRef],
        batch_run: BatchRun,
    ) -> list[DocumentOutcome]:
        """Archive the given closing documents of a closed case.

        Unresolved attempts left for the case by earlier runs are removed first,
        so those documents are attempted again under this run.

        Args:
            case: Closed case
            documents: Documents of the case's closing events
            batch_run: Run that owns new attempts

        Returns:
            One outcome per document, in order
        """
        removed = await self.history_store.delete_unresolved_attempts(case.case_id)
        if removed:
            self.logger.info(
                "Superseded unresolved archive attempts",
                case_id=case.case_id,
                removed=removed,
                batch_run_id=batch_run.id,
            )

        resolve_property = self._property_resolver(case)
        outcomes = []
        for document in documents:
            outcome = await self.archive_document(case, document, batch_run, resolve_property)
            if self.metrics:
                self.metrics.record_document(outcome.value)
            outcomes.append(outcome)
        return outcomes

    async def archive_document(
        self,
        case: Case,
        document: DocumentRef,
        batch_run: BatchRun,
        resolve_property: Optional[PropertyResolver] = None,
    ) -> DocumentOutcome:
        """Archive a single document unless it already has an attempt.

        Any failure of the document fetch, the metadata or the archive only
        affects this document; its attempt stays NOT_COMPLETED. Documents the
        archive cannot take (rejected format, undetectable file type) are
        reported for manual handling.

        Returns:
            Outcome for the document
        """
        document_id = document.document_id or ""
        log = self.logger.bind(
            case_id=case.case_id, document_id=document_id, batch_run_id=batch_run.id
        )
        resolve_property = resolve_property or self._property_resolver(case)

        if await self.history_store.find_attempt(document_id, case.case_id) is not None:
            log.info("Document already handled for this case, skipping")
            return DocumentOutcome.SKIPPED

        category = category_for(document.type_code)
        try:
            attempt = await self.history_store.create_attempt(
                ArchiveAttempt(
                    document_id=document_id,
                    case_id=case.case_id,
                    document_name=document.name,
                    document_type=category.description,
                    batch_run_id=batch_run.id,
                )
            )
        except DuplicateAttemptError:
            log.info("Archive attempt created concurrently, skipping")
            return DocumentOutcome.SKIPPED

        try:
            payload = with_detected_extension(await self.source.fetch_document(document_id))
            property_descriptor = await resolve_property()
            metadata = self.metadata_builder.build(case, document, payload, property_descriptor)
            archive_id = await self.sink.store(payload, metadata)
        except ArchiveError as e:
            if e.is_format_error:
                log.warning(
                    "Archive rejected document format, manual handling required",
                    reason=e.reason,
                    status=e.status,
                )
                await self._request_manual_handling(case, attempt)
                return DocumentOutcome.FORMAT_ERROR

            log.error("Archive request failed", reason=e.reason, status=e.status)
            return DocumentOutcome.FAILED
        except UnknownFileTypeError as e:
            log.warning("Document file type unknown, manual handling required", error=str(e))
            await self._request_manual_handling(case, attempt)
            return DocumentOutcome.FORMAT_ERROR
        except (SourceError, MetadataError) as e:
            log.error("Document could not be prepared for archiving", error=str(e))
            return DocumentOutcome.FAILED
        except Exception as e:
            log.error(
                "Unexpected error while archiving document",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return DocumentOutcome.FAILED

        await self.history_store.complete_attempt(attempt.id, archive_id, self.archive_url(archive_id))
        log.info("Document archived", archive_id=archive_id, document_type=category.code)

        if is_geotechnical(document.type_code) and self.notifier:
            property_descriptor = await resolve_property()
            await self.notifier.notify_geotechnical_archived(
                case_id=case.case_id,
                property_designation=(
                    property_descriptor.full_designation if property_descriptor else None
                ),
            )

        return DocumentOutcome.ARCHIVED

    async def _request_manual_handling(self, case: Case, attempt: ArchiveAttempt) -> None:
        if self.notifier:
            await self.notifier.notify_manual_handling(
                case_id=case.case_id,
                document_name=attempt.document_name,
                document_type=attempt.document_type,
            )
