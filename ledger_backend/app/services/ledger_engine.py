"""
Ledger Engine.

In-process entry point for the order, inventory and vendor services.
Every public method is one unit of work: its own session, its own
transaction, and its own entity lock scope that is released only after
the transaction has committed or rolled back.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from ledger_backend.app.core.observability import logger, track_operation
from ledger_backend.app.core.reliability import LockRetryPolicy
from ledger_backend.app.db.session import AsyncSessionLocal
from ledger_backend.app.domain.ledger.bindings import STOCK_LEDGER, VENDOR_LEDGER, binding_for
from ledger_backend.app.domain.ledger.sync_service import DocumentSyncService
from ledger_backend.app.models.ledger_enums import (
    DocumentKind, OwningEntityType, StockMovementType, VendorLedgerType
)
from ledger_backend.app.schemas.analytics import AccountStatement, DashboardSummary, MovementReportRow
from ledger_backend.app.schemas.documents import (
    AccountCreate, AccountResponse, DocumentCreate, DocumentResponse, LineItemCreate,
    StockUnitCreate, StockUnitResponse
)
from ledger_backend.app.schemas.ledger import (
    BalanceChange, DocumentTransitionResult, ReconciliationFailure, ReconciliationReport,
    TwoBucketChange
)
from ledger_backend.app.services import atomic_mutator, documents, reconciliation
from ledger_backend.app.services.analytics import AnalyticsService
from ledger_backend.app.services.audit import log_event, AuditAction
from ledger_backend.app.services.entity_locking import EntityLockRegistry, LOCK_SCOPE_KEY


class LedgerEngine:
    """Facade over the atomic mutator, document sync, reconciliation and reports."""

    def __init__(
        self,
        session_factory=None,
        lock_registry: Optional[EntityLockRegistry] = None,
        retry_policy: Optional[LockRetryPolicy] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.lock_registry = lock_registry or EntityLockRegistry()
        self.retry_policy = retry_policy or LockRetryPolicy()

    @asynccontextmanager
    async def unit_of_work(self):
        """
        Session + transaction + lock scope.

        Locks taken through the session are held until after commit/rollback.
        """
        async with self.session_factory() as db:
            async with self.lock_registry.scope() as scope:
                db.info[LOCK_SCOPE_KEY] = scope
                try:
                    async with db.begin():
                        yield db
                finally:
                    db.info.pop(LOCK_SCOPE_KEY, None)

    @asynccontextmanager
    async def read_session(self):
        async with self.session_factory() as db:
            yield db

    # ------------------------------------------------------------------
    # Atomic mutator
    # ------------------------------------------------------------------

    async def _adjust_balance(
        self,
        entity_type: OwningEntityType,
        entity_id: int,
        delta: Any,
        reason: Optional[str],
        performed_by: Optional[int],
    ) -> BalanceChange:
        async with self.unit_of_work() as db:
            if entity_type == OwningEntityType.STOCK_UNIT:
                change = await atomic_mutator.adjust_stock(
                    db,
                    entity_id,
                    delta,
                    movement_type=StockMovementType.MANUAL_ADJUSTMENT,
                    reason=reason,
                    performed_by=performed_by,
                )
            else:
                debit, credit = atomic_mutator.split_signed_amount(delta)
                change = await atomic_mutator.adjust_vendor_balance(
                    db,
                    entity_id,
                    debit=debit,
                    credit=credit,
                    entry_type=VendorLedgerType.ADJUSTMENT,
                    description=reason,
                    performed_by=performed_by,
                )
            await log_event(
                db,
                AuditAction.BALANCE_ADJUSTED,
                actor_id=performed_by,
                entity_type=entity_type.value,
                entity_id=entity_id,
                metadata={
                    "requested_delta": str(change.requested_delta),
                    "applied_delta": str(change.applied_delta),
                    "reason": reason,
                },
            )
            return change

    async def adjust_balance(
        self,
        entity_type: OwningEntityType,
        entity_id: int,
        delta: Any,
        reason: Optional[str] = None,
        performed_by: Optional[int] = None,
    ) -> BalanceChange:
        """
        Apply a signed delta to one owning entity.

        Stock is floored at zero; the returned change carries both the
        requested and the applied delta.
        """
        async with track_operation(
            "adjust_balance", entity_type=entity_type.value, entity_id=entity_id, delta=str(delta)
        ) as log_data:
            change = await self.retry_policy.call(
                self._adjust_balance, entity_type, entity_id, delta, reason, performed_by
            )
            log_data["applied_delta"] = str(change.applied_delta)
            return change

    async def _adjust_two_bucket(self, variant_id, delta_a, delta_b, reason, performed_by) -> TwoBucketChange:
        async with self.unit_of_work() as db:
            change = await atomic_mutator.adjust_stock_buckets(
                db,
                variant_id,
                fresh_delta=delta_a,
                damaged_delta=delta_b,
                movement_type=StockMovementType.MANUAL_ADJUSTMENT,
                reason=reason,
                performed_by=performed_by,
            )
            await log_event(
                db,
                AuditAction.BALANCE_ADJUSTED,
                actor_id=performed_by,
                entity_type=OwningEntityType.STOCK_UNIT.value,
                entity_id=variant_id,
                metadata={
                    "fresh_delta": change.applied_delta_a,
                    "damaged_delta": change.applied_delta_b,
                    "reason": reason,
                },
            )
            return change

    async def adjust_two_bucket(
        self,
        variant_id: int,
        delta_a: int,
        delta_b: int,
        reason: Optional[str] = None,
        performed_by: Optional[int] = None,
    ) -> TwoBucketChange:
        """Move the fresh (a) and damaged (b) buckets of one variant together."""
        async with track_operation(
            "adjust_two_bucket", entity_id=variant_id, delta_a=delta_a, delta_b=delta_b
        ):
            return await self.retry_policy.call(
                self._adjust_two_bucket, variant_id, delta_a, delta_b, reason, performed_by
            )

    # ------------------------------------------------------------------
    # Catalog and documents
    # ------------------------------------------------------------------

    async def register_stock_unit(
        self,
        sku: str,
        name: str,
        opening_stock: int = 0,
        cost_price: Any = Decimal("0"),
        reorder_level: Optional[int] = None,
        selling_price: Any = Decimal("0"),
        performed_by: Optional[int] = None,
    ) -> StockUnitResponse:
        data = StockUnitCreate(
            sku=sku,
            name=name,
            opening_stock=opening_stock,
            cost_price=cost_price,
            selling_price=selling_price,
            reorder_level=reorder_level,
        )
        async with track_operation("register_stock_unit", sku=sku):
            async with self.unit_of_work() as db:
                variant = await documents.register_stock_unit(db, data, performed_by=performed_by)
            return StockUnitResponse.model_validate(variant)

    async def register_account(
        self,
        name: str,
        opening_balance: Any = Decimal("0"),
        performed_by: Optional[int] = None,
    ) -> AccountResponse:
        data = AccountCreate(name=name, opening_balance=opening_balance)
        async with track_operation("register_account", account_name=name):
            async with self.unit_of_work() as db:
                vendor = await documents.register_account(db, data, performed_by=performed_by)
            return AccountResponse.model_validate(vendor)

    async def create_document(
        self,
        kind: DocumentKind,
        line_items: Optional[List[Any]] = None,
        vendor_id: Optional[int] = None,
        reference_no: Optional[str] = None,
        total_amount: Any = None,
        payment_method: Optional[str] = None,
        notes: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        performed_by: Optional[int] = None,
    ) -> DocumentResponse:
        """
        Store a PENDING document. line_items may be LineItemCreate or dicts.

        Raises:
            InvalidDocumentError: Payload breaks a business rule
        """
        data = DocumentCreate(
            kind=kind,
            reference_no=reference_no,
            vendor_id=vendor_id,
            line_items=[
                item if isinstance(item, LineItemCreate) else LineItemCreate(**item)
                for item in (line_items or [])
            ],
            total_amount=total_amount,
            payment_method=payment_method,
            notes=notes,
            occurred_at=occurred_at,
        )
        async with track_operation("create_document", kind=kind.value) as log_data:
            async with self.unit_of_work() as db:
                document = await documents.create_document(db, data, performed_by=performed_by)
            log_data["document_id"] = document.id
            return DocumentResponse.model_validate(document)

    async def _approve(self, document_id: int, approver_id: Optional[int]) -> DocumentTransitionResult:
        async with self.unit_of_work() as db:
            return await DocumentSyncService.approve(db, document_id, approver_id)

    async def approve_document(
        self,
        document_id: int,
        approver_id: Optional[int] = None
    ) -> DocumentTransitionResult:
        """
        PENDING -> APPROVED with every ledger effect, as one transaction.

        Raises:
            DocumentNotFoundError, DocumentNotPendingError, EntityNotFoundError
        """
        async with track_operation("approve_document", document_id=document_id) as log_data:
            result = await self.retry_policy.call(self._approve, document_id, approver_id)
            log_data["applied_line_items"] = len(result.line_items)
            return result

    async def _void(self, document_id: int, reason: str, voided_by: Optional[int]) -> DocumentTransitionResult:
        async with self.unit_of_work() as db:
            return await DocumentSyncService.void(db, document_id, reason, voided_by)

    async def void_document(
        self,
        document_id: int,
        reason: str,
        voided_by: Optional[int] = None
    ) -> DocumentTransitionResult:
        """
        APPROVED -> VOIDED, posting compensating entries.

        Raises:
            DocumentNotFoundError, DocumentNotApprovedError
        """
        async with track_operation("void_document", document_id=document_id) as log_data:
            result = await self.retry_policy.call(self._void, document_id, reason, voided_by)
            log_data["reversed_line_items"] = len(result.line_items)
            return result

    async def reject_document(
        self,
        document_id: int,
        reason: str,
        rejected_by: Optional[int] = None
    ) -> DocumentResponse:
        async with track_operation("reject_document", document_id=document_id):
            async with self.unit_of_work() as db:
                document = await DocumentSyncService.reject(db, document_id, reason, rejected_by)
            return DocumentResponse.model_validate(document)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def get_dashboard_summary(self, start: datetime, end: datetime, viewer_role: Any) -> DashboardSummary:
        async with track_operation("get_dashboard_summary", viewer_role=str(viewer_role)):
            async with self.read_session() as db:
                return await AnalyticsService.get_dashboard_summary(db, start, end, viewer_role)

    async def get_movement_report(
        self,
        start: datetime,
        end: datetime,
        variant_id: Optional[int] = None
    ) -> List[MovementReportRow]:
        async with track_operation("get_movement_report", variant_id=variant_id):
            async with self.read_session() as db:
                return await AnalyticsService.get_movement_report(db, start, end, variant_id)

    async def get_account_statement(self, vendor_id: int, start: datetime, end: datetime) -> AccountStatement:
        async with track_operation("get_account_statement", vendor_id=vendor_id):
            async with self.read_session() as db:
                return await AnalyticsService.get_account_statement(db, vendor_id, start, end)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def recompute(self, entity_type: OwningEntityType, entity_id: int) -> int:
        """Rewrite running balances for one entity. Returns the rewritten entry count."""
        binding = binding_for(entity_type)
        async with track_operation("recompute", entity_type=entity_type.value, entity_id=entity_id) as log_data:
            async with self.unit_of_work() as db:
                rewritten = await reconciliation.recompute_running_balances(db, binding, entity_id)
            log_data["rewritten"] = rewritten
            return rewritten

    async def resync(self, entity_type: OwningEntityType, entity_id: int) -> BalanceChange:
        """Overwrite one entity's cached balance with its ledger sum."""
        binding = binding_for(entity_type)
        async with track_operation("resync", entity_type=entity_type.value, entity_id=entity_id):
            async with self.unit_of_work() as db:
                before, after = await reconciliation.resync_balance(db, binding, entity_id)
            return BalanceChange(
                entity_type=entity_type,
                entity_id=entity_id,
                before=before,
                after=after,
                requested_delta=after - before,
                applied_delta=after - before,
                ledger_entry_id=None,
            )

    async def backfill(self, document_ids: Optional[List[int]] = None) -> int:
        """
        Insert missing ledger entries for applied documents, one document per
        transaction. Returns the number of inserted entries.
        """
        async with track_operation("backfill") as log_data:
            if document_ids is None:
                async with self.read_session() as db:
                    document_ids = await reconciliation.applied_document_ids(db)

            inserted = 0
            for document_id in document_ids:
                async with self.unit_of_work() as db:
                    inserted += len(await reconciliation.backfill_document(db, document_id))
            log_data["inserted"] = inserted
            return inserted

    async def _dead_letter(self, report: ReconciliationReport, failure: ReconciliationFailure, exc: Exception):
        logger.error(
            "Reconciliation Unit Failed",
            extra={
                "task": failure.task,
                "entity_type": failure.entity_type.value if failure.entity_type else None,
                "entity_id": failure.entity_id,
                "document_id": failure.document_id,
                "error": failure.error,
            }
        )
        payload = {
            "entity_type": failure.entity_type.value if failure.entity_type else None,
            "entity_id": failure.entity_id,
            "document_id": failure.document_id,
        }
        async with self.unit_of_work() as db:
            item = await reconciliation.record_dead_letter(db, failure.task, payload, exc)
        failure.dead_letter_id = item.id
        report.failures.append(failure)

    async def reconcile_all(self) -> ReconciliationReport:
        """
        Backfill, recompute and resync every entity.

        Each document and each entity is its own unit of work: a failure is
        logged, captured in the dead-letter queue and skipped, and leaves that
        unit exactly as it was.
        """
        report = ReconciliationReport()
        async with track_operation("reconcile_all") as log_data:
            async with self.read_session() as db:
                document_ids = await reconciliation.applied_document_ids(db)
                targets = [
                    (binding, entity_id)
                    for binding in (STOCK_LEDGER, VENDOR_LEDGER)
                    for entity_id in await reconciliation.entity_ids(db, binding)
                ]

            # 1. Backfill
            for document_id in document_ids:
                try:
                    async with self.unit_of_work() as db:
                        inserted = await reconciliation.backfill_document(db, document_id)
                    report.backfilled_entries += len(inserted)
                except Exception as exc:
                    await self._dead_letter(report, ReconciliationFailure(
                        task="ledger.backfill_document",
                        document_id=document_id,
                        error=f"{type(exc).__name__}: {exc}",
                    ), exc)

            # 2. Recompute + resync per entity
            for binding, entity_id in targets:
                try:
                    async with self.unit_of_work() as db:
                        outcome = await reconciliation.reconcile_entity(db, binding, entity_id)
                except Exception as exc:
                    await self._dead_letter(report, ReconciliationFailure(
                        task="ledger.reconcile_entity",
                        entity_type=binding.entity_type,
                        entity_id=entity_id,
                        error=f"{type(exc).__name__}: {exc}",
                    ), exc)
                    continue

                report.recomputed_entities += 1
                report.resynced_entities += 1
                report.rewritten_running_balances += outcome.rewritten_running_balances
                if outcome.corrected:
                    report.corrected_balances += 1
                    logger.warning(
                        "Balance Cache Corrected",
                        extra={
                            "entity_type": binding.entity_type.value,
                            "entity_id": entity_id,
                            "cached": str(outcome.balance_before),
                            "ledger": str(outcome.balance_after),
                        }
                    )

            async with self.unit_of_work() as db:
                await log_event(
                    db,
                    AuditAction.LEDGER_RECONCILED,
                    metadata=report.model_dump(mode="json", exclude={"failures"}),
                )

            log_data.update(report.model_dump(exclude={"failures"}))
            log_data["failures"] = len(report.failures)
            return report
