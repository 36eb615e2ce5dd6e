"""
Occurrence lifecycle manager.

State machine:
    pending -> completed   (attaches session_id, may auto-invoice)
    pending -> skipped     (no side effects)

completed and skipped are terminal. Every transition is a single guarded
UPDATE on the expected prior status, so of two racing callers exactly one
wins and the other gets StateConflictError. Nothing moves on its own when
a date passes; only an explicit command changes an occurrence.
"""

import logging
from typing import Optional

from ..database.models import OccurrenceDB, OccurrenceStatusEnum, OCCURRENCE_TRANSITIONS
from ..database.repositories.recurring import OccurrenceRepository, get_occurrence_repository
from ..exceptions import (
    CollaboratorError,
    InvoiceCreationError,
    NotFoundError,
    SessionCreationError,
    StateConflictError,
)
from ..integrations.billing import BillingClient, get_billing_client

logger = logging.getLogger(__name__)


class OccurrenceLifecycleManager:
    """Applies user and automation commands to occurrences."""

    def __init__(
        self,
        occurrence_repo: Optional[OccurrenceRepository] = None,
        billing: Optional[BillingClient] = None,
    ):
        self.occurrences = occurrence_repo or get_occurrence_repository()
        self.billing = billing or get_billing_client()

    async def get(self, occurrence_id: int) -> OccurrenceDB:
        """Load an occurrence with its job, or raise NotFoundError."""
        occurrence = await self.occurrences.get_by_id(occurrence_id)
        if occurrence is None:
            raise NotFoundError("Occurrence", occurrence_id)
        return occurrence

    async def _transition(
        self,
        occurrence_id: int,
        target: OccurrenceStatusEnum,
        attempted: str,
        **fields,
    ) -> OccurrenceDB:
        if target not in OCCURRENCE_TRANSITIONS[OccurrenceStatusEnum.PENDING]:
            raise ValueError(f"pending cannot move to {target.value}")

        moved = await self.occurrences.transition(
            occurrence_id, OccurrenceStatusEnum.PENDING, target, **fields
        )
        if not moved:
            current = await self.occurrences.get_by_id(occurrence_id)
            if current is None:
                raise NotFoundError("Occurrence", occurrence_id)
            raise StateConflictError(occurrence_id, current.status, attempted)

        return await self.get(occurrence_id)

    async def skip(self, occurrence_id: int) -> OccurrenceDB:
        """Mark a pending occurrence as skipped."""
        occurrence = await self._transition(occurrence_id, OccurrenceStatusEnum.SKIPPED, "skip")
        logger.info(f"Skipped occurrence {occurrence_id} ({occurrence.scheduled_date})")
        return occurrence

    async def complete(self, occurrence_id: int, session_id: int) -> OccurrenceDB:
        """
        Mark a pending occurrence as completed by the given work session.

        If the job bills automatically, an invoice is created for that one
        session. The completion stands even when invoicing fails.

        Raises:
            NotFoundError: No such occurrence
            StateConflictError: The occurrence is already completed or skipped
            InvoiceCreationError: Completed, but the invoice could not be created
        """
        occurrence = await self._transition(
            occurrence_id,
            OccurrenceStatusEnum.COMPLETED,
            "complete",
            session_id=session_id,
        )
        logger.info(f"Completed occurrence {occurrence_id} with session {session_id}")

        if occurrence.job.auto_invoice:
            occurrence = await self._create_invoice(occurrence)
        return occurrence

    async def complete_with_new_session(self, occurrence_id: int) -> OccurrenceDB:
        """
        Create a work session for a pending occurrence, then complete it.

        Raises:
            SessionCreationError: The session could not be created; the
                occurrence is unchanged
        """
        occurrence = await self.get(occurrence_id)
        if occurrence.status != OccurrenceStatusEnum.PENDING.value:
            raise StateConflictError(occurrence_id, occurrence.status, "complete")

        try:
            session_id = await self.billing.create_session(occurrence.job, occurrence)
        except CollaboratorError as e:
            logger.warning(f"Session creation failed for occurrence {occurrence_id}: {e}")
            raise SessionCreationError(
                f"Could not create a session for occurrence {occurrence_id}: {e}",
                occurrence_id=occurrence_id,
            ) from e

        try:
            return await self.complete(occurrence_id, session_id)
        except StateConflictError:
            logger.warning(
                f"Session {session_id} was created for occurrence {occurrence_id}, "
                f"which another caller resolved first"
            )
            raise

    async def retry_invoice(self, occurrence_id: int) -> OccurrenceDB:
        """Retry invoice creation for a completed occurrence that has none."""
        occurrence = await self.get(occurrence_id)
        if (
            occurrence.status != OccurrenceStatusEnum.COMPLETED.value
            or occurrence.session_id is None
            or occurrence.invoice_id is not None
        ):
            raise StateConflictError(occurrence_id, occurrence.status, "invoice")
        return await self._create_invoice(occurrence)

    async def _create_invoice(self, occurrence: OccurrenceDB) -> OccurrenceDB:
        try:
            invoice_id = await self.billing.create_invoice(
                occurrence.job, occurrence.session_id, occurrence_id=occurrence.id
            )
        except CollaboratorError as e:
            logger.warning(f"Auto-invoice failed for occurrence {occurrence.id}: {e}")
            raise InvoiceCreationError(
                f"Occurrence {occurrence.id} is completed but its invoice was not created: {e}",
                occurrence_id=occurrence.id,
            ) from e

        if not await self.occurrences.attach_invoice(occurrence.id, invoice_id):
            logger.warning(
                f"Invoice {invoice_id} not attached: occurrence {occurrence.id} already has one"
            )
            return await self.get(occurrence.id)

        occurrence.invoice_id = invoice_id
        logger.info(f"Attached invoice {invoice_id} to occurrence {occurrence.id}")
        return occurrence


# Singleton instance
_lifecycle_manager: Optional[OccurrenceLifecycleManager] = None


def get_lifecycle_manager() -> OccurrenceLifecycleManager:
    """Get the lifecycle manager singleton."""
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = OccurrenceLifecycleManager()
    return _lifecycle_manager
