"""
Atomic Mutator.

The only sanctioned way to change a cached balance. Each call:
1. Locks the owning entity (in-process lock + SELECT ... FOR UPDATE)
2. Reads the current balance
3. Computes the new balance (stock is floored at zero, every balance
   saturates at what its column can store)
4. Writes the balance cache
5. Appends exactly one ledger entry with the before/after snapshot
6. Rewrites running balances if the entry was back-dated behind others

Everything runs on the caller's session; the caller owns the transaction,
so steps 2-5 commit or roll back together.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.exceptions import EntityNotFoundError, LockTimeoutError
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.domain.ledger.bindings import LedgerBinding, STOCK_LEDGER, VENDOR_LEDGER
from ledger_backend.app.models.ledger_enums import (
    MovementDirection, StockMovementType, VendorLedgerType
)
from ledger_backend.app.models.product_variant import ProductVariant
from ledger_backend.app.models.stock_movement import StockMovement
from ledger_backend.app.models.vendor import Vendor
from ledger_backend.app.models.vendor_ledger_entry import VendorLedgerEntry
from ledger_backend.app.schemas.ledger import BalanceChange, TwoBucketChange
from ledger_backend.app.services.entity_locking import LOCK_SCOPE_KEY

# PostgreSQL SQLSTATE for lock_not_available
_PG_LOCK_NOT_AVAILABLE = "55P03"


async def lock_entity(db: AsyncSession, binding: LedgerBinding, entity_id: int) -> Any:
    """
    Acquire the exclusive lock on one owning entity and load its current row.

    Args:
        db: Database session with an open transaction
        binding: Ledger binding of the entity
        entity_id: Entity to lock

    Returns:
        The locked entity, refreshed from the database

    Raises:
        EntityNotFoundError: If the entity does not exist
        LockTimeoutError: If the lock could not be obtained in time
    """
    scope = db.info.get(LOCK_SCOPE_KEY)
    if scope is not None:
        await scope.acquire(binding.entity_type, entity_id)

    timeout = scope.registry.timeout_seconds if scope is not None else None
    bind = db.get_bind()
    if timeout and bind.dialect.name == "postgresql":
        await db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))

    model = binding.entity_model
    stmt = (
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    try:
        result = await db.execute(stmt)
    except DBAPIError as e:
        sqlstate = getattr(e.orig, "sqlstate", None) or getattr(e.orig, "pgcode", None)
        if sqlstate == _PG_LOCK_NOT_AVAILABLE:
            raise LockTimeoutError(binding.entity_type.value, entity_id, timeout or 0) from e
        raise

    entity = result.scalar_one_or_none()
    if entity is None:
        raise EntityNotFoundError(binding.entity_label, entity_id)
    return entity


async def load_entries(db: AsyncSession, binding: LedgerBinding, entity_id: int) -> List[Any]:
    result = await db.execute(
        binding.ordered_entries(entity_id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def restate_running_balances(db: AsyncSession, binding: LedgerBinding, entity_id: int) -> int:
    """
    Walk one entity's entries in ledger order and rewrite stale running balances.

    The caller must already hold the entity lock.

    Returns:
        Number of entries whose stored running balance changed
    """
    running = binding.zero
    rewritten = 0
    for entry in await load_entries(db, binding, entity_id):
        running = running + binding.net_change(entry)
        if binding.coerce(entry.running_balance) != running:
            entry.running_balance = running
            rewritten += 1

    await db.flush()
    return rewritten


async def _restate_if_backdated(db: AsyncSession, binding: LedgerBinding, entity_id: int, entry: Any) -> None:
    model = binding.entry_model
    later = await db.execute(
        select(model.id)
        .where(binding.entry_fk_column() == entity_id, model.occurred_at > entry.occurred_at)
        .limit(1)
    )
    if later.first() is not None:
        await restate_running_balances(db, binding, entity_id)


def _direction(*deltas: int) -> MovementDirection:
    for delta in deltas:
        if delta > 0:
            return MovementDirection.IN
        if delta < 0:
            return MovementDirection.OUT
    return MovementDirection.IN


async def adjust_stock(
    db: AsyncSession,
    variant_id: int,
    delta: int,
    movement_type: StockMovementType = StockMovementType.MANUAL_ADJUSTMENT,
    reason: Optional[str] = None,
    performed_by: Optional[int] = None,
    source_document_id: Optional[int] = None,
    source_line_item_id: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
) -> BalanceChange:
    """
    Apply a signed delta to a variant's fresh stock.

    The new value is max(0, current + delta), saturated at the column limit;
    the ledger records the delta actually applied, not the one requested.

    Returns:
        BalanceChange with before/after and requested/applied deltas
    """
    binding = STOCK_LEDGER
    delta = binding.coerce(delta)
    variant: ProductVariant = await lock_entity(db, binding, variant_id)

    before = variant.current_stock
    after = binding.clamp(before + delta)
    applied = after - before
    quantity_in, quantity_out = binding.split(applied)

    variant.current_stock = after
    variant.updated_at = utcnow()

    movement = StockMovement(
        variant_id=variant_id,
        movement_type=movement_type,
        direction=_direction(applied, delta),
        quantity_in=quantity_in,
        quantity_out=quantity_out,
        stock_before=before,
        stock_after=after,
        damaged_change=0,
        running_balance=after,
        source_document_id=source_document_id,
        source_line_item_id=source_line_item_id,
        reason=reason,
        performed_by=performed_by,
        occurred_at=occurred_at or utcnow(),
        created_at=utcnow(),
    )
    db.add(movement)
    await db.flush()  # To get movement.id
    await _restate_if_backdated(db, binding, variant_id, movement)

    return BalanceChange(
        entity_type=binding.entity_type,
        entity_id=variant_id,
        before=before,
        after=after,
        requested_delta=delta,
        applied_delta=applied,
        ledger_entry_id=movement.id,
    )


async def adjust_stock_buckets(
    db: AsyncSession,
    variant_id: int,
    fresh_delta: int,
    damaged_delta: int,
    movement_type: StockMovementType = StockMovementType.MANUAL_ADJUSTMENT,
    reason: Optional[str] = None,
    performed_by: Optional[int] = None,
    source_document_id: Optional[int] = None,
    source_line_item_id: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
) -> TwoBucketChange:
    """
    Apply independent deltas to the fresh and damaged buckets of one variant.

    One lock acquisition, one combined stock movement. Each bucket is floored
    at zero on its own.
    """
    binding = STOCK_LEDGER
    fresh_delta = binding.coerce(fresh_delta)
    damaged_delta = binding.coerce(damaged_delta)
    variant: ProductVariant = await lock_entity(db, binding, variant_id)

    fresh_before = variant.current_stock
    fresh_after = binding.clamp(fresh_before + fresh_delta)
    damaged_before = variant.damaged_stock
    damaged_after = binding.clamp(damaged_before + damaged_delta)

    fresh_applied = fresh_after - fresh_before
    damaged_applied = damaged_after - damaged_before
    quantity_in, quantity_out = binding.split(fresh_applied)

    variant.current_stock = fresh_after
    variant.damaged_stock = damaged_after
    variant.updated_at = utcnow()

    movement = StockMovement(
        variant_id=variant_id,
        movement_type=movement_type,
        direction=_direction(fresh_applied, damaged_applied, fresh_delta, damaged_delta),
        quantity_in=quantity_in,
        quantity_out=quantity_out,
        stock_before=fresh_before,
        stock_after=fresh_after,
        damaged_change=damaged_applied,
        damaged_before=damaged_before,
        damaged_after=damaged_after,
        running_balance=fresh_after,
        source_document_id=source_document_id,
        source_line_item_id=source_line_item_id,
        reason=reason,
        performed_by=performed_by,
        occurred_at=occurred_at or utcnow(),
        created_at=utcnow(),
    )
    db.add(movement)
    await db.flush()
    await _restate_if_backdated(db, binding, variant_id, movement)

    return TwoBucketChange(
        entity_id=variant_id,
        before_a=fresh_before,
        after_a=fresh_after,
        before_b=damaged_before,
        after_b=damaged_after,
        applied_delta_a=fresh_applied,
        applied_delta_b=damaged_applied,
        ledger_entry_id=movement.id,
    )


# Lifetime total touched by each vendor entry kind, and the sign it moves with
_VENDOR_TOTALS = {
    VendorLedgerType.PURCHASE: ("total_purchases", 1),
    VendorLedgerType.VOID_PURCHASE: ("total_purchases", -1),
    VendorLedgerType.PURCHASE_RETURN: ("total_returns", 1),
    VendorLedgerType.VOID_RETURN: ("total_returns", -1),
    VendorLedgerType.PAYMENT: ("total_payments", 1),
    VendorLedgerType.VOID_PAYMENT: ("total_payments", -1),
}


async def adjust_vendor_balance(
    db: AsyncSession,
    vendor_id: int,
    debit: Any = 0,
    credit: Any = 0,
    entry_type: VendorLedgerType = VendorLedgerType.ADJUSTMENT,
    description: Optional[str] = None,
    reference_no: Optional[str] = None,
    performed_by: Optional[int] = None,
    source_document_id: Optional[int] = None,
    occurred_at: Optional[datetime] = None,
) -> BalanceChange:
    """
    Post a debit and/or credit to a vendor account.

    The balance is signed and has no floor: new = current + debit - credit,
    saturated at the column limit. When it saturates, the entry records the
    applied amount on one side only.
    Lifetime totals follow the entry kind (voids reverse them).
    """
    binding = VENDOR_LEDGER
    debit = binding.coerce(debit)
    credit = binding.coerce(credit)
    vendor: Vendor = await lock_entity(db, binding, vendor_id)

    before = binding.coerce(vendor.balance)
    requested = debit - credit
    # The entry's own magnitude column has the same limit as the balance
    applied = binding.saturate(binding.clamp(before + requested) - before)
    after = before + applied
    if applied != requested:
        debit, credit = binding.split(applied)

    vendor.balance = after
    total = _VENDOR_TOTALS.get(entry_type)
    if total is not None:
        field, sign = total
        magnitude = debit if debit > 0 else credit
        current_total = binding.coerce(getattr(vendor, field))
        setattr(vendor, field, binding.saturate(current_total + sign * magnitude))
    vendor.updated_at = utcnow()

    entry = VendorLedgerEntry(
        vendor_id=vendor_id,
        entry_type=entry_type,
        debit=debit,
        credit=credit,
        balance_before=before,
        balance_after=after,
        running_balance=after,
        source_document_id=source_document_id,
        reference_no=reference_no,
        description=description,
        performed_by=performed_by,
        occurred_at=occurred_at or utcnow(),
        created_at=utcnow(),
    )
    db.add(entry)
    await db.flush()
    await _restate_if_backdated(db, binding, vendor_id, entry)

    return BalanceChange(
        entity_type=binding.entity_type,
        entity_id=vendor_id,
        before=before,
        after=after,
        requested_delta=requested,
        applied_delta=applied,
        ledger_entry_id=entry.id,
    )


def split_signed_amount(amount: Any) -> tuple:
    """Turn a signed vendor delta into (debit, credit)."""
    return VENDOR_LEDGER.split(amount)
