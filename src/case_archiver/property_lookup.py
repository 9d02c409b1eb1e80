"""Client for the property register."""

from typing import Optional

from pydantic import ValidationError

from case_archiver.http_client import TRANSIENT_ERRORS, ServiceClient
from case_archiver.models import PropertyDescriptor
from utils.circuit_breaker import CircuitBreakerOpenError


class PropertyLookupClient(ServiceClient):
    """Looks up property descriptors by register reference.

    Lookups never fail the caller: a missing property or an unreachable
    register both yield None.
    """

    service_name = "property_lookup"

    async def by_reference(self, reference: Optional[str]) -> Optional[PropertyDescriptor]:
        if not reference:
            return None

        try:
            status, body = await self.request("GET", f"properties/{reference}")
        except (*TRANSIENT_ERRORS, CircuitBreakerOpenError) as e:
            self.logger.warning("Property lookup failed", reference=reference, error=str(e))
            return None

        if status == 404:
            self.logger.info("Property not found", reference=reference)
            return None
        if status != 200 or not isinstance(body, dict):
            self.logger.warning(
                "Unexpected property lookup response", reference=reference, status=status
            )
            return None

        try:
            return PropertyDescriptor.model_validate(body)
        except ValidationError as e:
            self.logger.warning("Malformed property descriptor", reference=reference, error=str(e))
            return None
