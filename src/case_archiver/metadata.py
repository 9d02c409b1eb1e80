"""Archive metadata generation for case documents."""

import re
from datetime import date
from typing import Optional

import filetype
import structlog
from pydantic import Field

from case_archiver.categories import category_for
from case_archiver.exceptions import MetadataError, UnknownFileTypeError
from case_archiver.models import Case, DocumentPayload, DocumentRef, PropertyDescriptor, WireModel
from utils.logging import get_logger

CLOSED_CASE_STATUS = "Stängt"

# Cases that arrived after this date belong to the current board and classification scheme
CURRENT_SCHEME_CUTOFF = date(2016, 12, 31)
BOARD_REORGANISATION_CUTOFF = date(1993, 1, 1)

CURRENT_CLASSIFICATION = "Hantera bygglov"
LEGACY_CLASSIFICATION = "F2 Bygglov"

ORGANISATION_ACTIVE_FROM = "1974"

_HAS_EXTENSION = re.compile(r".*(\.[a-zA-Z]{3,4})$")


class ArchiveCreator(WireModel):
    name: str
    active_from: Optional[str] = None
    active_to: Optional[str] = None
    subordinate: Optional["ArchiveCreator"] = None


class PropertyRecord(WireModel):
    designation: Optional[str] = None
    tract: Optional[str] = None
    object_identity: Optional[str] = None


class AttachmentRecord(WireModel):
    name: str
    description: Optional[str] = None
    link: str


class DocumentRecord(WireModel):
    object_id: str
    created: Optional[str] = None
    document_type: Optional[str] = None
    title: Optional[str] = None
    attachments: list[AttachmentRecord] = Field(default_factory=list)


class CaseRecord(WireModel):
    object_id: str
    extra_ids: list[str] = Field(default_factory=list)
    title: Optional[str] = None
    closed: Optional[str] = None
    created: Optional[str] = None
    status: str = CLOSED_CASE_STATUS
    case_type: Optional[str] = None
    properties: list[PropertyRecord] = Field(default_factory=list)
    classification: list[str] = Field(default_factory=list)
    note: Optional[str] = None
    documents: list[DocumentRecord] = Field(default_factory=list)


class ArchiveMetadata(WireModel):
    """Delivery metadata sent to the archive alongside a document."""

    archive_creator: ArchiveCreator
    cases: list[CaseRecord] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


def normalize_extension(extension: Optional[str]) -> str:
    """Return the extension lower-cased and prefixed with a dot.

    Raises:
        MetadataError: If the extension is missing or blank
    """
    if extension is None or not extension.strip():
        raise MetadataError("Document has no file extension")
    extension = extension.strip().lower()
    return extension if extension.startswith(".") else f".{extension}"


def attachment_name(name: str, extension: Optional[str]) -> str:
    """Name of the archived attachment, with its file extension.

    A name that already ends in a three or four letter extension is kept as is.

    Raises:
        MetadataError: If the name needs an extension and none is known
    """
    if _HAS_EXTENSION.match(name):
        return name
    return name + normalize_extension(extension)


def attachment_extension(name: str, extension: Optional[str]) -> str:
    """Dotted lower-case extension of an attachment, falling back to the name's suffix."""
    if extension is not None and extension.strip():
        return normalize_extension(extension)
    match = _HAS_EXTENSION.match(name)
    if match:
        return match.group(1).lower()
    raise MetadataError("Document has no file extension", context={"name": name})


def with_detected_extension(payload: DocumentPayload) -> DocumentPayload:
    """Fill in a missing extension from the file type of the document content.

    Payloads that carry an extension, or whose name ends in one, are returned
    unchanged.

    Raises:
        UnknownFileTypeError: If the content matches no known file type
    """
    if (payload.extension and payload.extension.strip()) or _HAS_EXTENSION.match(payload.name):
        return payload

    kind = filetype.guess(payload.content)
    if kind is None:
        raise UnknownFileTypeError(
            "Document has no file extension and its file type is unknown",
            context={"document_id": payload.document_id, "name": payload.name},
        )
    return payload.model_copy(update={"extension": kind.extension})


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class MetadataBuilder:
    """Builds the archive metadata for one document of a closed case."""

    def __init__(
        self,
        organisation: str = "Sundsvalls kommun",
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize metadata builder.

        Args:
            organisation: Name of the archive creator organisation
            logger: Optional logger instance
        """
        self.organisation = organisation
        self.logger = logger or get_logger("metadata")

    def archive_creator(self, arrival_date: Optional[date]) -> ArchiveCreator:
        """Archive creator structure, with the responsible board chosen by arrival date."""
        if arrival_date is None or arrival_date > CURRENT_SCHEME_CUTOFF:
            board = ArchiveCreator(name="Stadsbyggnadsnämnden", active_from="2017")
        elif arrival_date >= BOARD_REORGANISATION_CUTOFF:
            board = ArchiveCreator(
                name="Stadsbyggnadsnämnden", active_from="1993", active_to="2017"
            )
        else:
            board = ArchiveCreator(name="Byggnadsnämnden", active_from="1974", active_to="1992")

        return ArchiveCreator(
            name=self.organisation,
            active_from=ORGANISATION_ACTIVE_FROM,
            subordinate=board,
        )

    @staticmethod
    def classification(arrival_date: Optional[date]) -> str:
        if arrival_date is None or arrival_date > CURRENT_SCHEME_CUTOFF:
            return CURRENT_CLASSIFICATION
        return LEGACY_CLASSIFICATION

    def build(
        self,
        case: Case,
        document_ref: DocumentRef,
        payload: DocumentPayload,
        property_descriptor: Optional[PropertyDescriptor] = None,
    ) -> ArchiveMetadata:
        """Build metadata for a document.

        Args:
            case: Closed case the document belongs to
            document_ref: Reference to the document on the case's closing event
            payload: Fetched document content and attributes
            property_descriptor: Main property of the case, if it could be looked up

        Returns:
            Archive metadata

        Raises:
            MetadataError: If the attachment name cannot be completed with an extension
        """
        category = category_for(document_ref.type_code)
        name = attachment_name(payload.name, payload.extension)

        document = DocumentRecord(
            object_id=payload.document_id,
            created=_iso(payload.created),
            document_type=category.archive_classification,
            title=category.description,
            attachments=[
                AttachmentRecord(
                    name=name,
                    description=payload.description,
                    link=f"Bilagor\\{name}",
                )
            ],
        )

        properties = []
        if property_descriptor is not None:
            properties.append(
                PropertyRecord(
                    designation=property_descriptor.full_designation,
                    tract=property_descriptor.tract,
                    object_identity=property_descriptor.object_id,
                )
            )

        case_record = CaseRecord(
            object_id=case.case_id,
            extra_ids=[case.case_id],
            title=case.description,
            closed=_iso(case.closed_date),
            created=_iso(case.registered_date),
            case_type=case.case_type,
            properties=properties,
            classification=[self.classification(case.arrival_date)],
            note=str(case.arrival_date.year) if case.arrival_date else None,
            documents=[document],
        )

        self.logger.debug(
            "Archive metadata built",
            case_id=case.case_id,
            document_id=payload.document_id,
            attachment_name=name,
            document_type=category.archive_classification,
        )

        return ArchiveMetadata(
            archive_creator=self.archive_creator(case.arrival_date),
            cases=[case_record],
        )
