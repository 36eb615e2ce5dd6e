"""
Billing collaborator client.

Work sessions and invoices belong to the host application. This client
asks the host's billing API to create them and returns the new record IDs.
Failures are reported once as SessionCreationError / InvoiceCreationError;
nothing here retries.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Type

import aiohttp

from config import settings
from ..database.models import RecurringJobDB, OccurrenceDB
from ..exceptions import CollaboratorError, SessionCreationError, InvoiceCreationError

logger = logging.getLogger(__name__)


def seconds_to_hours(seconds: int) -> float:
    """Billable hours rounded to two decimals."""
    return round(seconds / 3600, 2)


class BillingClient:
    """Creates work sessions and invoices through the host's billing API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.billing_api_url).rstrip("/")
        self.token = token if token is not None else settings.billing_api_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.billing_timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        error_cls: Type[CollaboratorError],
        occurrence_id: Optional[int],
    ) -> int:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout, headers=self._headers()) as http:
                async with http.post(url, json=payload) as response:
                    if response.status not in (200, 201):
                        body = await response.text()
                        raise error_cls(
                            f"POST {path} returned {response.status}: {body[:200]}",
                            occurrence_id=occurrence_id,
                        )
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise error_cls(f"POST {path} failed: {e}", occurrence_id=occurrence_id) from e

        record_id = data.get("id") if isinstance(data, dict) else None
        if record_id is None:
            raise error_cls(f"POST {path} response has no id", occurrence_id=occurrence_id)
        try:
            return int(record_id)
        except (TypeError, ValueError) as e:
            raise error_cls(
                f"POST {path} returned a non-numeric id: {record_id!r}",
                occurrence_id=occurrence_id,
            ) from e

    async def create_session(self, job: RecurringJobDB, occurrence: OccurrenceDB) -> int:
        """Create a work session of the job's length on the occurrence date."""
        payload = {
            "client_id": job.client_id,
            "duration_seconds": job.duration_seconds,
            "date": occurrence.scheduled_date.isoformat(),
            "notes": job.notes or job.title,
            "recurring_job_id": job.id,
            "occurrence_id": occurrence.id,
        }
        session_id = await self._post("/sessions", payload, SessionCreationError, occurrence.id)
        logger.info(f"Created session {session_id} for occurrence {occurrence.id}")
        return session_id

    async def create_invoice(
        self,
        job: RecurringJobDB,
        session_id: int,
        occurrence_id: Optional[int] = None,
    ) -> int:
        """Create an invoice covering a single session."""
        payload = {
            "client_id": job.client_id,
            "session_ids": [session_id],
            "total_hours": seconds_to_hours(job.duration_seconds),
        }
        invoice_id = await self._post("/invoices", payload, InvoiceCreationError, occurrence_id)
        logger.info(f"Created invoice {invoice_id} for session {session_id}")
        return invoice_id


# Singleton instance
_billing_client: Optional[BillingClient] = None


def get_billing_client() -> BillingClient:
    """Get the billing client singleton."""
    global _billing_client
    if _billing_client is None:
        _billing_client = BillingClient()
    return _billing_client
