"""Pytest configuration and shared fixtures."""

from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest

from case_archiver.config import ArchiverConfig
from case_archiver.exceptions import ArchiveError, SourceError
from case_archiver.history_store import InMemoryHistoryStore
from case_archiver.metadata import ArchiveMetadata
from case_archiver.models import (
    Case,
    CaseEvent,
    CaseObject,
    CasePage,
    DocumentPayload,
    DocumentRef,
    PropertyDescriptor,
)

FIXED_NOW = datetime(2024, 5, 20, 12, 0, 0)


def make_case(
    case_id: str,
    documents: Optional[list[tuple[str, str]]] = None,
    status: str = "Avslutat",
    event_type: str = "ARKIV",
    arrival_date: Optional[date] = date(2023, 3, 1),
    property_reference: Optional[str] = "prop-1",
) -> Case:
    """Build a case with one event carrying (document_id, type_code) documents."""
    documents = documents if documents is not None else [("doc-1", "BIL")]
    return Case(
        case_id=case_id,
        status=status,
        case_type="NYBYGGNAD",
        description=f"Bygglov for {case_id}",
        arrival_date=arrival_date,
        registered_date=date(2023, 3, 2),
        closed_date=date(2024, 5, 1),
        events=[
            CaseEvent(
                event_type=event_type,
                documents=[
                    DocumentRef(document_id=doc_id, name=f"{doc_id}-name", type_code=type_code)
                    for doc_id, type_code in documents
                ],
            )
        ],
        objects=(
            [CaseObject(property_reference=property_reference, is_main=True)]
            if property_reference
            else []
        ),
    )


class FakeCaseSource:
    """Serves prepared pages in order, then empty pages that reach the upper bound."""

    def __init__(self, pages: Optional[list[CasePage]] = None) -> None:
        self.pages = list(pages or [])
        self.page_calls: list[tuple[datetime, datetime]] = []
        self.document_calls: list[str] = []
        self.missing_documents: set[str] = set()
        self.extensions: dict[str, Optional[str]] = {}
        self.contents: dict[str, bytes] = {}

    async def fetch_page(self, lower: datetime, upper: datetime) -> CasePage:
        self.page_calls.append((lower, upper))
        if self.pages:
            return self.pages.pop(0)
        return CasePage(cases=[], page_start=lower, page_end=upper)

    async def fetch_document(self, document_id: str) -> DocumentPayload:
        self.document_calls.append(document_id)
        if document_id in self.missing_documents:
            raise SourceError("Case source returned HTTP 404", context={"path": document_id})
        return DocumentPayload(
            document_id=document_id,
            name=f"{document_id}-name",
            extension=self.extensions.get(document_id, "pdf"),
            description="Ritning",
            created=date(2023, 3, 5),
            content=self.contents.get(document_id, b"%PDF-1.4 content"),
        )

    async def close(self) -> None:
        pass


class FakeArchiveSink:
    """Records stored documents; selected documents can be made to fail."""

    def __init__(self) -> None:
        self.stored: list[tuple[DocumentPayload, ArchiveMetadata]] = []
        self.failing: set[str] = set()
        self.format_rejected: set[str] = set()
        self.errors: dict[str, Exception] = {}

    async def store(self, document: DocumentPayload, metadata: ArchiveMetadata) -> str:
        if document.document_id in self.errors:
            raise self.errors[document.document_id]
        if document.document_id in self.format_rejected:
            raise ArchiveError("File format is not allowed", status=400)
        if document.document_id in self.failing:
            raise ArchiveError("Service Unavailable", status=503)
        self.stored.append((document, metadata))
        return f"archive-{document.document_id}"

    @property
    def stored_ids(self) -> list[str]:
        return [document.document_id for document, _ in self.stored]

    async def close(self) -> None:
        pass


class FakePropertyLookup:
    def __init__(self, descriptor: Optional[PropertyDescriptor] = None) -> None:
        self.descriptor = descriptor
        self.calls: list[str] = []

    async def by_reference(self, reference: Optional[str]) -> Optional[PropertyDescriptor]:
        self.calls.append(reference)
        return self.descriptor

    async def close(self) -> None:
        pass


def page_with(cases: list[Case], page_end: Optional[datetime] = None) -> CasePage:
    return CasePage(cases=cases, page_end=page_end)


@pytest.fixture
def fixed_now() -> Any:
    return lambda: FIXED_NOW


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def case_source() -> FakeCaseSource:
    return FakeCaseSource()


@pytest.fixture
def archive_sink() -> FakeArchiveSink:
    return FakeArchiveSink()


@pytest.fixture
def property_lookup() -> FakePropertyLookup:
    return FakePropertyLookup(
        PropertyDescriptor(
            municipality="SUNDSVALL",
            designation="BALDER 1",
            tract="BALDER",
            object_id="909a6a80-d1a4-90ec-e040-ed8f66444c3f",
        )
    )


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.notify_geotechnical_archived.return_value = True
    mock.notify_manual_handling.return_value = True
    return mock


@pytest.fixture
def config_data(tmp_path: Path) -> dict[str, Any]:
    return {
        "version": "1.0",
        "history": {"storage_type": "memory"},
        "case_source": {"base_url": "http://cases.local/api"},
        "archive": {
            "base_url": "http://archive.local/api",
            "archive_url_template": "https://archive.local/search?id={archive_id}",
        },
        "notifications": {
            "enabled": True,
            "geotechnical_recipient": "geo@example.com",
            "manual_handling_recipient": "registry@example.com",
        },
        "scheduler": {"lock_type": "file", "lock_file_dir": str(tmp_path / "locks")},
        "monitoring": {"metrics_enabled": False},
    }


@pytest.fixture
def archiver_config(config_data: dict[str, Any]) -> ArchiverConfig:
    return ArchiverConfig.model_validate(config_data)


@pytest.fixture
def yesterday() -> date:
    return FIXED_NOW.date() - timedelta(days=1)
