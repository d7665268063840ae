"""
HTTP client for the CRM (HubSpot-style contacts API).

Contacts are keyed by email. Upserts use the batch upsert endpoint with
``idProperty=email`` so repeated bookings never create duplicate contacts.
"""

import logging
from typing import Any, Optional

import httpx

from app.config import get_settings
from app.core.resilience import BreakerConfig, CircuitBreaker, DependencyGuard, RetryPolicy

logger = logging.getLogger(__name__)

CONTACTS_PATH = "/crm/v3/objects/contacts"


class CrmClient:
    """CRM adapter guarded by its own breaker."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        guard: Optional[DependencyGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = base_url or settings.crm_api_url
        self.token = token if token is not None else settings.crm_api_token
        self.guard = guard or DependencyGuard(
            "crm",
            breaker=CircuitBreaker(
                "crm",
                BreakerConfig(
                    failure_threshold=settings.crm_failure_threshold,
                    reset_timeout=settings.crm_reset_timeout_seconds,
                    monitoring_period=settings.crm_monitoring_period_seconds,
                ),
            ),
            retry=RetryPolicy(
                attempts=settings.crm_retry_attempts,
                delay=settings.crm_retry_delay_seconds,
            ),
            timeout=settings.crm_timeout_seconds,
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def upsert_contact(self, email: str, attributes: dict[str, Any]) -> str:
        """Create or update the contact for ``email``.

        Args:
            email: Contact email (the identity property)
            attributes: Contact properties (firstname, phone, company, ...)

        Returns:
            CRM contact id

        Raises:
            IntegrationError: CRM unreachable or breaker open
        """
        properties = {k: v for k, v in attributes.items() if v not in (None, "")}
        properties["email"] = email

        async def upsert() -> str:
            client = await self._get_client()
            response = await client.post(
                f"{CONTACTS_PATH}/batch/upsert",
                json={"inputs": [{"idProperty": "email", "id": email, "properties": properties}]},
            )
            response.raise_for_status()
            results = response.json().get("results", [])
            if not results:
                raise httpx.HTTPStatusError(
                    "Upsert returned no results",
                    request=response.request,
                    response=response,
                )
            return str(results[0]["id"])

        contact_id = await self.guard.call(upsert, "upsert_contact")
        logger.info(f"CRM contact {contact_id} upserted")
        return contact_id

    async def update_status(self, contact_ref: str, status: str) -> None:
        """Record the latest booking status on a contact."""

        async def update() -> None:
            client = await self._get_client()
            response = await client.patch(
                f"{CONTACTS_PATH}/{contact_ref}",
                json={"properties": {"booking_status": status}},
            )
            response.raise_for_status()

        await self.guard.call(update, "update_status")

    def stats(self) -> dict:
        return self.guard.stats()
