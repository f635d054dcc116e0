"""
Document Synchronization Service (Domain Logic).

Translates source document status transitions into atomic mutator calls.
This is the single dispatch point for document-driven ledger writes: nothing
else posts PURCHASE / RETURN / DAMAGE / ADJUSTMENT / PAYMENT entries, so a
document can never be applied twice by two different code paths.

Must run inside the caller's transaction: the status change and every
ledger write commit or roll back together.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.exceptions import (
    DocumentNotApprovedError, DocumentNotFoundError, DocumentNotPendingError
)
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.domain.ledger.delta_rules import (
    AccountLeg, StockLeg, approval_legs, void_legs
)
from ledger_backend.app.models.ledger_enums import DocumentStatus, OwningEntityType
from ledger_backend.app.models.source_document import SourceDocument
from ledger_backend.app.schemas.ledger import AppliedLineItem, DocumentTransitionResult
from ledger_backend.app.services import atomic_mutator
from ledger_backend.app.services.audit import log_event, AuditAction


class DocumentSyncService:

    @staticmethod
    async def _transition(
        db: AsyncSession,
        document_id: int,
        expected: DocumentStatus,
        values: dict,
    ) -> SourceDocument:
        """
        Move a document out of `expected` status, guarded on that prior value.

        The conditional UPDATE is the idempotency guard: a second attempt at
        the same transition matches zero rows, whether it comes from a retry
        or from a concurrent caller that lost the race.
        """
        result = await db.execute(
            update(SourceDocument)
            .where(SourceDocument.id == document_id, SourceDocument.status == expected)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )

        document = await db.get(SourceDocument, document_id, populate_existing=True)
        if document is None:
            raise DocumentNotFoundError(document_id)

        if result.rowcount == 0:
            if expected == DocumentStatus.PENDING:
                raise DocumentNotPendingError(document_id, document.status.value)
            raise DocumentNotApprovedError(document_id, document.status.value)

        return document

    @staticmethod
    async def _apply_stock_leg(
        db: AsyncSession,
        document: SourceDocument,
        leg: StockLeg,
        occurred_at: datetime,
        performed_by: Optional[int],
        voiding: bool = False,
    ) -> AppliedLineItem:
        label = "Void" if voiding else document.kind.value.replace("_", " ").title()
        reason = f"{label} - {document.reference_no}"

        if leg.two_bucket:
            change = await atomic_mutator.adjust_stock_buckets(
                db,
                leg.variant_id,
                fresh_delta=leg.fresh_delta,
                damaged_delta=leg.damaged_delta,
                movement_type=leg.movement_type,
                reason=reason,
                performed_by=performed_by,
                source_document_id=document.id,
                source_line_item_id=leg.line_item_id,
                occurred_at=occurred_at,
            )
            return AppliedLineItem(
                line_item_id=leg.line_item_id,
                entity_type=OwningEntityType.STOCK_UNIT,
                entity_id=leg.variant_id,
                entry_kind=leg.movement_type.value,
                requested_delta=leg.fresh_delta,
                applied_delta=change.applied_delta_a,
                balance_before=change.before_a,
                balance_after=change.after_a,
                damaged_before=change.before_b,
                damaged_after=change.after_b,
                ledger_entry_id=change.ledger_entry_id,
            )

        change = await atomic_mutator.adjust_stock(
            db,
            leg.variant_id,
            leg.fresh_delta,
            movement_type=leg.movement_type,
            reason=reason,
            performed_by=performed_by,
            source_document_id=document.id,
            source_line_item_id=leg.line_item_id,
            occurred_at=occurred_at,
        )
        return AppliedLineItem(
            line_item_id=leg.line_item_id,
            entity_type=OwningEntityType.STOCK_UNIT,
            entity_id=leg.variant_id,
            entry_kind=leg.movement_type.value,
            requested_delta=change.requested_delta,
            applied_delta=change.applied_delta,
            balance_before=change.before,
            balance_after=change.after,
            ledger_entry_id=change.ledger_entry_id,
        )

    @staticmethod
    async def _apply_account_leg(
        db: AsyncSession,
        document: SourceDocument,
        leg: AccountLeg,
        occurred_at: datetime,
        performed_by: Optional[int],
    ) -> AppliedLineItem:
        label = leg.entry_type.value.replace("_", " ").title()
        change = await atomic_mutator.adjust_vendor_balance(
            db,
            leg.vendor_id,
            debit=leg.debit,
            credit=leg.credit,
            entry_type=leg.entry_type,
            description=f"{label}: {document.reference_no}",
            reference_no=document.reference_no,
            performed_by=performed_by,
            source_document_id=document.id,
            occurred_at=occurred_at,
        )
        return AppliedLineItem(
            entity_type=OwningEntityType.ACCOUNT,
            entity_id=leg.vendor_id,
            entry_kind=leg.entry_type.value,
            requested_delta=change.requested_delta,
            applied_delta=change.applied_delta,
            balance_before=change.before,
            balance_after=change.after,
            ledger_entry_id=change.ledger_entry_id,
        )

    @staticmethod
    async def approve(
        db: AsyncSession,
        document_id: int,
        approver_id: Optional[int] = None,
    ) -> DocumentTransitionResult:
        """
        Approve a pending document and apply its ledger effects.

        Flow:
        1. Guarded transition PENDING -> APPROVED
        2. Compute legs from the document (one per line item + vendor leg)
        3. Atomic mutator once per leg, in entity order
        4. Audit record

        Raises:
            DocumentNotFoundError: Unknown document
            DocumentNotPendingError: Document already left PENDING
            EntityNotFoundError: A line item references a missing entity
                (the caller's transaction must be rolled back)
        """
        approved_at = utcnow()
        document = await DocumentSyncService._transition(
            db,
            document_id,
            DocumentStatus.PENDING,
            {
                "status": DocumentStatus.APPROVED,
                "approved_by": approver_id,
                "approved_at": approved_at,
            },
        )

        stock_legs, account_leg = approval_legs(document)
        applied: List[AppliedLineItem] = []
        for leg in stock_legs:
            applied.append(await DocumentSyncService._apply_stock_leg(
                db, document, leg, document.occurred_at, approver_id
            ))
        if account_leg is not None:
            applied.append(await DocumentSyncService._apply_account_leg(
                db, document, account_leg, document.occurred_at, approver_id
            ))

        await log_event(
            db,
            AuditAction.DOCUMENT_APPROVED,
            actor_id=approver_id,
            document_id=document.id,
            metadata={"kind": document.kind.value, "legs": len(applied)},
        )

        return DocumentTransitionResult(
            document_id=document.id,
            kind=document.kind,
            status=DocumentStatus.APPROVED,
            transitioned_at=approved_at,
            line_items=applied,
        )

    @staticmethod
    async def void(
        db: AsyncSession,
        document_id: int,
        reason: str,
        voided_by: Optional[int] = None,
    ) -> DocumentTransitionResult:
        """
        Void an approved document by posting compensating entries.

        The legs are recomputed from the document itself and inverted; history
        is never deleted.

        Raises:
            DocumentNotFoundError: Unknown document
            DocumentNotApprovedError: Document is not APPROVED
        """
        voided_at = utcnow()
        document = await DocumentSyncService._transition(
            db,
            document_id,
            DocumentStatus.APPROVED,
            {
                "status": DocumentStatus.VOIDED,
                "voided_by": voided_by,
                "voided_at": voided_at,
                "void_reason": reason,
            },
        )

        stock_legs, account_leg = void_legs(document)
        reversed_items: List[AppliedLineItem] = []
        for leg in stock_legs:
            reversed_items.append(await DocumentSyncService._apply_stock_leg(
                db, document, leg, voided_at, voided_by, voiding=True
            ))
        if account_leg is not None:
            reversed_items.append(await DocumentSyncService._apply_account_leg(
                db, document, account_leg, voided_at, voided_by
            ))

        await log_event(
            db,
            AuditAction.DOCUMENT_VOIDED,
            actor_id=voided_by,
            document_id=document.id,
            metadata={"kind": document.kind.value, "reason": reason, "legs": len(reversed_items)},
        )

        return DocumentTransitionResult(
            document_id=document.id,
            kind=document.kind,
            status=DocumentStatus.VOIDED,
            transitioned_at=voided_at,
            line_items=reversed_items,
        )

    @staticmethod
    async def reject(
        db: AsyncSession,
        document_id: int,
        reason: str,
        rejected_by: Optional[int] = None,
    ) -> SourceDocument:
        """Reject a pending document. No ledger effect."""
        document = await DocumentSyncService._transition(
            db,
            document_id,
            DocumentStatus.PENDING,
            {
                "status": DocumentStatus.REJECTED,
                "rejected_by": rejected_by,
                "rejected_at": utcnow(),
                "rejection_reason": reason,
            },
        )

        await log_event(
            db,
            AuditAction.DOCUMENT_REJECTED,
            actor_id=rejected_by,
            document_id=document.id,
            metadata={"reason": reason},
        )
        return document

    @staticmethod
    async def get_document(db: AsyncSession, document_id: int) -> SourceDocument:
        result = await db.execute(
            select(SourceDocument).where(SourceDocument.id == document_id)
        )
        document = result.scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document
