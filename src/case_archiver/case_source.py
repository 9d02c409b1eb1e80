"""Client for the case export service."""

import base64
import binascii
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from case_archiver.exceptions import SourceError
from case_archiver.http_client import TRANSIENT_ERRORS, ServiceClient
from case_archiver.models import CasePage, DocumentPayload
from utils.circuit_breaker import CircuitBreakerOpenError

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class CaseExportClient(ServiceClient):
    """Reads updated cases and their documents from the case export service."""

    service_name = "case_source"

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        try:
            status, body = await self.request("GET", path, params=params)
        except (*TRANSIENT_ERRORS, CircuitBreakerOpenError) as e:
            raise SourceError(
                f"Case source request failed: {e}",
                context={"path": path},
            ) from e

        if status != 200:
            raise SourceError(
                f"Case source returned HTTP {status}",
                context={"path": path, "body": body},
            )
        return body

    async def fetch_page(self, lower: datetime, upper: datetime) -> CasePage:
        """Fetch cases updated within (lower, upper].

        Args:
            lower: Exclusive lower bound
            upper: Inclusive upper bound

        Returns:
            The cases plus the time range the page actually covers

        Raises:
            SourceError: If the request fails after retries or the answer is malformed
        """
        body = await self._get(
            "cases/updated",
            params={
                "lowerExclusiveBound": lower.strftime(TIMESTAMP_FORMAT),
                "upperInclusiveBound": upper.strftime(TIMESTAMP_FORMAT),
            },
        )
        try:
            page = CasePage.model_validate(body or {})
        except ValidationError as e:
            raise SourceError(
                "Malformed case page",
                context={"lower": lower.isoformat(), "upper": upper.isoformat(), "error": str(e)},
            ) from e

        self.logger.debug(
            "Case page received",
            cases=len(page.cases),
            page_start=page.page_start.isoformat() if page.page_start else None,
            page_end=page.page_end.isoformat() if page.page_end else None,
        )
        return page

    async def fetch_document(self, document_id: str) -> DocumentPayload:
        """Fetch a document with its (base64 encoded on the wire) content.

        Raises:
            SourceError: If the document cannot be fetched or decoded
        """
        body = await self._get(f"documents/{document_id}")
        if not isinstance(body, dict):
            raise SourceError("Malformed document", context={"document_id": document_id})

        data = dict(body)
        encoded = data.pop("content", None) or ""
        try:
            data["content"] = base64.b64decode(encoded, validate=True)
            return DocumentPayload.model_validate(data)
        except (binascii.Error, ValidationError) as e:
            raise SourceError(
                "Malformed document",
                context={"document_id": document_id, "error": str(e)},
            ) from e
