"""Client for the long-term archive."""

import base64
from typing import Any

from case_archiver.exceptions import ArchiveError
from case_archiver.http_client import TRANSIENT_ERRORS, ServerError, ServiceClient
from case_archiver.metadata import ArchiveMetadata, attachment_extension, attachment_name
from case_archiver.models import DocumentPayload
from utils.circuit_breaker import CircuitBreakerOpenError


def _error_reason(body: Any) -> str:
    """Extract the human readable reason from an error response."""
    if isinstance(body, dict):
        for key in ("detail", "message", "title"):
            if body.get(key):
                return str(body[key])
    return str(body) if body else "no reason given"


class ArchiveSinkClient(ServiceClient):
    """Stores documents with their metadata in the archive."""

    service_name = "archive_sink"

    async def store(self, document: DocumentPayload, metadata: ArchiveMetadata) -> str:
        """Store a document.

        Args:
            document: Document content and attributes
            metadata: Archive metadata for the document

        Returns:
            The archive ID assigned by the archive

        Raises:
            ArchiveError: If the archive rejects the document or cannot be reached
            MetadataError: If the attachment has no usable extension
        """
        payload = {
            "attachment": {
                "name": attachment_name(document.name, document.extension),
                "extension": attachment_extension(document.name, document.extension),
                "file": base64.b64encode(document.content).decode("ascii"),
            },
            "metadata": metadata.to_json(),
        }

        try:
            status, body = await self.request("POST", "archive/case-document", payload=payload)
        except ServerError as e:
            raise ArchiveError(
                _error_reason(e.body),
                status=e.status,
                context={"document_id": document.document_id},
            ) from e
        except (*TRANSIENT_ERRORS, CircuitBreakerOpenError) as e:
            raise ArchiveError(str(e), context={"document_id": document.document_id}) from e

        if status >= 400:
            raise ArchiveError(
                _error_reason(body),
                status=status,
                context={"document_id": document.document_id},
            )

        archive_id = body.get("archiveId") if isinstance(body, dict) else None
        if not archive_id:
            raise ArchiveError(
                "response carried no archive ID",
                status=status,
                context={"document_id": document.document_id},
            )

        self.logger.debug(
            "Document stored in archive",
            document_id=document.document_id,
            archive_id=archive_id,
        )
        return str(archive_id)
