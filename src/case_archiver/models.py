"""Domain records and case-source wire models."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BatchTrigger(str, Enum):
    """What started a batch run."""

    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class ArchiveStatus(str, Enum):
    """Completion status shared by batch runs and archive attempts."""

    NOT_COMPLETED = "NOT_COMPLETED"
    COMPLETED = "COMPLETED"


class BatchRun(BaseModel):
    """One invocation of the archiver over a date window."""

    id: int
    start: date
    end: date
    trigger: BatchTrigger
    status: ArchiveStatus = ArchiveStatus.NOT_COMPLETED
    created_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == ArchiveStatus.COMPLETED


class ArchiveAttempt(BaseModel):
    """Archival record of a single (document, case) pair."""

    id: Optional[int] = None
    document_id: str
    case_id: str
    document_name: Optional[str] = None
    document_type: Optional[str] = None
    batch_run_id: int
    status: ArchiveStatus = ArchiveStatus.NOT_COMPLETED
    archive_id: Optional[str] = None
    archive_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == ArchiveStatus.COMPLETED


class WireModel(BaseModel):
    """Base for models exchanged with remote services (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentRef(WireModel):
    """A document attached to a case event."""

    document_id: Optional[str] = None
    name: Optional[str] = None
    type_code: Optional[str] = None
    handling_id: Optional[str] = None


class CaseEvent(WireModel):
    """A lifecycle event on a case, with its attached documents."""

    event_type: Optional[str] = None
    documents: list[DocumentRef] = Field(default_factory=list)


class CaseObject(WireModel):
    """A property (real estate) object referenced by a case."""

    property_reference: Optional[str] = None
    is_main: bool = False


class Case(WireModel):
    """An administrative case as exported by the case source."""

    case_id: str
    status: Optional[str] = None
    case_type: Optional[str] = None
    description: Optional[str] = None
    arrival_date: Optional[date] = None
    registered_date: Optional[date] = None
    closed_date: Optional[date] = None
    events: list[CaseEvent] = Field(default_factory=list)
    objects: list[CaseObject] = Field(default_factory=list)

    @property
    def main_property_reference(self) -> Optional[str]:
        for obj in self.objects:
            if obj.is_main and obj.property_reference:
                return obj.property_reference
        return None


class CasePage(WireModel):
    """One bounded-time-range response from the case source."""

    cases: list[Case] = Field(default_factory=list)
    page_start: Optional[datetime] = None
    page_end: Optional[datetime] = None


class DocumentPayload(WireModel):
    """Document content fetched from the case source."""

    document_id: str
    name: str
    extension: Optional[str] = None
    description: Optional[str] = None
    created: Optional[date] = None
    content: bytes = b""


class PropertyDescriptor(WireModel):
    """Property register entry used to enrich metadata and notifications."""

    municipality: Optional[str] = None
    designation: Optional[str] = None
    tract: Optional[str] = None
    object_id: Optional[str] = None

    @property
    def full_designation(self) -> Optional[str]:
        parts = [p for p in (self.municipality, self.designation) if p]
        return " ".join(parts) if parts else None
