"""
Ledger reconciliation (recompute / backfill / resync).

Repair routines for when the balance cache and the ledger have drifted
apart. All of them are idempotent and take the same per-entity lock as
the atomic mutator, so they can run alongside live traffic.

Each function works on the caller's session; the caller decides the unit
of work (one entity or one document per transaction).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.exceptions import DocumentNotFoundError
from ledger_backend.app.core.observability import logger
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.domain.ledger.bindings import LedgerBinding, STOCK_LEDGER, VENDOR_LEDGER
from ledger_backend.app.domain.ledger.delta_rules import (
    AccountLeg, StockLeg, approval_legs, void_legs
)
from ledger_backend.app.models.dlq import DeadLetterQueue, DLQStatus
from ledger_backend.app.models.ledger_enums import (
    DocumentStatus, MovementDirection, OwningEntityType
)
from ledger_backend.app.models.source_document import SourceDocument
from ledger_backend.app.models.stock_movement import StockMovement
from ledger_backend.app.models.vendor_ledger_entry import VendorLedgerEntry
from ledger_backend.app.services.atomic_mutator import (
    load_entries, lock_entity, restate_running_balances
)

EntityKey = Tuple[OwningEntityType, int]

BACKFILL_REASON_PREFIX = "Backfilled"


@dataclass
class EntityReconciliation:
    entity_type: OwningEntityType
    entity_id: int
    rewritten_running_balances: int
    balance_before: Any
    balance_after: Any

    @property
    def corrected(self) -> bool:
        return self.balance_before != self.balance_after


async def recompute_running_balances(
    db: AsyncSession,
    binding: LedgerBinding,
    entity_id: int
) -> int:
    """
    Rewrite running_balance on every entry of one entity in ledger order.

    Magnitudes are left untouched. Running it twice yields the same values.

    Returns:
        Number of entries whose stored running balance changed
    """
    await lock_entity(db, binding, entity_id)
    return await restate_running_balances(db, binding, entity_id)


async def resync_balance(
    db: AsyncSession,
    binding: LedgerBinding,
    entity_id: int
) -> Tuple[Any, Any]:
    """
    Overwrite the balance cache with the sum of the entity's ledger.

    For stock the damaged bucket is resynced from the recorded damaged
    changes as well.

    Returns:
        (cached balance before, balance after)
    """
    entity = await lock_entity(db, binding, entity_id)
    entries = await load_entries(db, binding, entity_id)

    expected = sum((binding.net_change(entry) for entry in entries), binding.zero)
    clamped = binding.clamp(expected)
    if clamped != expected:
        logger.warning(
            "Ledger Sum Out Of Range",
            extra={
                "entity_type": binding.entity_type.value,
                "entity_id": entity_id,
                "ledger_sum": str(expected),
            }
        )

    before = binding.coerce(getattr(entity, binding.balance_attr))
    if before != clamped:
        setattr(entity, binding.balance_attr, clamped)
        entity.updated_at = utcnow()

    if binding is STOCK_LEDGER:
        damaged = binding.clamp(sum(int(entry.damaged_change or 0) for entry in entries))
        if entity.damaged_stock != damaged:
            entity.damaged_stock = damaged
            entity.updated_at = utcnow()

    await db.flush()
    return before, clamped


async def reconcile_entity(
    db: AsyncSession,
    binding: LedgerBinding,
    entity_id: int
) -> EntityReconciliation:
    """Recompute running balances, then resync the cache, for one entity."""
    rewritten = await recompute_running_balances(db, binding, entity_id)
    before, after = await resync_balance(db, binding, entity_id)
    return EntityReconciliation(
        entity_type=binding.entity_type,
        entity_id=entity_id,
        rewritten_running_balances=rewritten,
        balance_before=before,
        balance_after=after,
    )


async def _stock_entry_exists(db: AsyncSession, document_id: int, leg: StockLeg) -> bool:
    result = await db.execute(
        select(StockMovement.id).where(
            StockMovement.source_document_id == document_id,
            StockMovement.source_line_item_id == leg.line_item_id,
            StockMovement.movement_type == leg.movement_type,
        )
    )
    return result.first() is not None


async def _account_entry_exists(db: AsyncSession, document_id: int, leg: AccountLeg) -> bool:
    result = await db.execute(
        select(VendorLedgerEntry.id).where(
            VendorLedgerEntry.source_document_id == document_id,
            VendorLedgerEntry.entry_type == leg.entry_type,
        )
    )
    return result.first() is not None


async def _backfill_legs(
    db: AsyncSession,
    document: SourceDocument,
    stock_legs: List[StockLeg],
    account_leg: Optional[AccountLeg],
    occurred_at: datetime,
) -> List[EntityKey]:
    inserted: List[EntityKey] = []
    reason = f"{BACKFILL_REASON_PREFIX}: {document.reference_no}"

    for leg in stock_legs:
        # Lock before the existence check so a live write cannot slip in between
        variant = await lock_entity(db, STOCK_LEDGER, leg.variant_id)
        if await _stock_entry_exists(db, document.id, leg):
            continue

        quantity_in, quantity_out = STOCK_LEDGER.split(leg.fresh_delta)
        movement = StockMovement(
            variant_id=leg.variant_id,
            movement_type=leg.movement_type,
            direction=MovementDirection.OUT if leg.fresh_delta < 0 or leg.damaged_delta < 0 else MovementDirection.IN,
            quantity_in=quantity_in,
            quantity_out=quantity_out,
            stock_before=variant.current_stock,
            stock_after=variant.current_stock,
            damaged_change=leg.damaged_delta,
            damaged_before=variant.damaged_stock if leg.two_bucket else None,
            damaged_after=variant.damaged_stock if leg.two_bucket else None,
            running_balance=0,  # Set by recompute
            source_document_id=document.id,
            source_line_item_id=leg.line_item_id,
            reason=reason,
            performed_by=document.approved_by,
            occurred_at=occurred_at,
            created_at=utcnow(),
        )
        db.add(movement)
        inserted.append((OwningEntityType.STOCK_UNIT, leg.variant_id))

    if account_leg is not None:
        vendor = await lock_entity(db, VENDOR_LEDGER, account_leg.vendor_id)
        if not await _account_entry_exists(db, document.id, account_leg):
            balance = VENDOR_LEDGER.coerce(vendor.balance)
            entry = VendorLedgerEntry(
                vendor_id=account_leg.vendor_id,
                entry_type=account_leg.entry_type,
                debit=account_leg.debit,
                credit=account_leg.credit,
                balance_before=balance,
                balance_after=balance,
                running_balance=0,  # Set by recompute
                source_document_id=document.id,
                reference_no=document.reference_no,
                description=reason,
                performed_by=document.approved_by,
                occurred_at=occurred_at,
                created_at=utcnow(),
            )
            db.add(entry)
            inserted.append((OwningEntityType.ACCOUNT, account_leg.vendor_id))

    await db.flush()
    return inserted


async def backfill_document(db: AsyncSession, document_id: int) -> List[EntityKey]:
    """
    Synthesize the ledger entries an applied document should have produced.

    APPROVED documents need their approval entries; VOIDED documents need
    both the approval entries and the compensating ones. Entries that
    already exist for a (document, kind) pair are left alone, so repeated
    runs insert nothing new. Running balances and the cache are not
    touched here; reconcile_entity() fixes them afterwards.

    Returns:
        One (entity type, entity id) key per inserted entry
    """
    document = await db.get(SourceDocument, document_id, populate_existing=True)
    if document is None:
        raise DocumentNotFoundError(document_id)

    if document.status not in (DocumentStatus.APPROVED, DocumentStatus.VOIDED):
        return []

    stock_legs, account_leg = approval_legs(document)
    inserted = await _backfill_legs(db, document, stock_legs, account_leg, document.occurred_at)

    if document.status == DocumentStatus.VOIDED:
        stock_legs, account_leg = void_legs(document)
        inserted += await _backfill_legs(
            db, document, stock_legs, account_leg, document.voided_at or document.occurred_at
        )

    if inserted:
        logger.info(
            "Ledger Entries Backfilled",
            extra={"document_id": document_id, "inserted": len(inserted)}
        )
    return inserted


async def applied_document_ids(db: AsyncSession) -> List[int]:
    """Documents whose ledger effects should exist (APPROVED or VOIDED)."""
    result = await db.execute(
        select(SourceDocument.id)
        .where(SourceDocument.status.in_([DocumentStatus.APPROVED, DocumentStatus.VOIDED]))
        .order_by(SourceDocument.id)
    )
    return list(result.scalars().all())


async def entity_ids(db: AsyncSession, binding: LedgerBinding) -> List[int]:
    model = binding.entity_model
    result = await db.execute(select(model.id).order_by(model.id))
    return list(result.scalars().all())


async def record_dead_letter(
    db: AsyncSession,
    task_name: str,
    payload: Dict[str, Any],
    error: Exception
) -> DeadLetterQueue:
    """Capture a failed reconciliation unit for later retry."""
    item = DeadLetterQueue(
        task_name=task_name,
        entity_type=payload.get("entity_type"),
        entity_id=payload.get("entity_id"),
        document_id=payload.get("document_id"),
        error_message=f"{type(error).__name__}: {error}",
        payload=payload,
        status=DLQStatus.FAILED,
    )
    db.add(item)
    await db.flush()
    return item
