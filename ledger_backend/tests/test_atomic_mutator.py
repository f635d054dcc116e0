"""
Stage 1: Atomic Mutator Tests.

Validates single-entity balance mutations and their ledger entries.
"""

import pytest
from decimal import Decimal

from ledger_backend.app.core.exceptions import EntityNotFoundError, InvalidAmountError
from ledger_backend.app.domain.ledger.bindings import (
    MONEY_LIMIT, STOCK_LEDGER, STOCK_LIMIT, VENDOR_LEDGER
)
from ledger_backend.app.models.ledger_enums import (
    MovementDirection, OwningEntityType, StockMovementType, VendorLedgerType
)
from ledger_backend.app.models.product_variant import ProductVariant
from ledger_backend.app.models.vendor import Vendor
from ledger_backend.app.services.atomic_mutator import adjust_stock


@pytest.mark.asyncio
async def test_opening_stock_is_a_ledger_entry(variant, fetch_entries):
    """Registering with opening stock writes one OPENING_BALANCE entry."""
    entries = await fetch_entries(STOCK_LEDGER, variant.id)

    assert variant.current_stock == 10
    assert len(entries) == 1
    assert entries[0].movement_type == StockMovementType.OPENING_BALANCE
    assert entries[0].quantity_in == 10
    assert entries[0].running_balance == 10


@pytest.mark.asyncio
async def test_adjust_balance_increases_stock(ledger, variant, reload, fetch_entries):
    change = await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, variant.id, 5, reason="Recount")

    assert change.before == 10
    assert change.after == 15
    assert change.applied_delta == 5
    assert not change.clamped

    stored = await reload(ProductVariant, variant.id)
    assert stored.current_stock == 15

    entries = await fetch_entries(STOCK_LEDGER, variant.id)
    last = entries[-1]
    assert last.id == change.ledger_entry_id
    assert last.movement_type == StockMovementType.MANUAL_ADJUSTMENT
    assert last.direction == MovementDirection.IN
    assert (last.stock_before, last.stock_after, last.running_balance) == (10, 15, 15)
    assert last.reason == "Recount"


@pytest.mark.asyncio
async def test_floor_clamp_records_applied_delta(ledger, reload, fetch_entries):
    """Stock 5, delta -1000: balance 0 and the entry records 5 out, not 1000."""
    unit = await ledger.register_stock_unit(sku="SKU-CLAMP", name="Clamp", opening_stock=5)

    change = await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, unit.id, -1000)

    assert change.before == 5
    assert change.after == 0
    assert change.requested_delta == -1000
    assert change.applied_delta == -5
    assert change.clamped

    entries = await fetch_entries(STOCK_LEDGER, unit.id)
    last = entries[-1]
    assert last.quantity_out == 5
    assert last.quantity_in == 0
    assert last.direction == MovementDirection.OUT
    assert last.running_balance == 0

    stored = await reload(ProductVariant, unit.id)
    assert stored.current_stock == 0


@pytest.mark.asyncio
async def test_adjust_missing_entity_fails(ledger, fetch_entries):
    with pytest.raises(EntityNotFoundError) as exc_info:
        await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, 9999, 3)

    assert exc_info.value.error_code == "ERR_LEDGER_404_ENTITY"
    assert await fetch_entries(STOCK_LEDGER, 9999) == []


@pytest.mark.asyncio
async def test_vendor_balance_is_signed(ledger, vendor, reload, fetch_entries):
    """Vendor balances are never clamped."""
    change = await ledger.adjust_balance(OwningEntityType.ACCOUNT, vendor.id, Decimal("-150.50"))

    assert change.before == Decimal("0")
    assert change.after == Decimal("-150.50")
    assert not change.clamped

    stored = await reload(Vendor, vendor.id)
    assert stored.balance == Decimal("-150.50")

    entries = await fetch_entries(VENDOR_LEDGER, vendor.id)
    assert len(entries) == 1
    assert entries[0].entry_type == VendorLedgerType.ADJUSTMENT
    assert entries[0].debit == Decimal("0")
    assert entries[0].credit == Decimal("150.50")
    assert entries[0].running_balance == Decimal("-150.50")


@pytest.mark.asyncio
async def test_opening_vendor_balance(ledger, fetch_entries):
    account = await ledger.register_account(name="Opening Vendor", opening_balance=Decimal("1200"))

    assert account.balance == Decimal("1200")
    entries = await fetch_entries(VENDOR_LEDGER, account.id)
    assert [e.entry_type for e in entries] == [VendorLedgerType.OPENING_BALANCE]
    assert entries[0].debit == Decimal("1200")


@pytest.mark.asyncio
async def test_two_bucket_single_entry(ledger, variant, reload, fetch_entries):
    """Fresh and damaged move together under one lock with one entry."""
    change = await ledger.adjust_two_bucket(variant.id, -3, 3, reason="Water damage")

    assert (change.before_a, change.after_a) == (10, 7)
    assert (change.before_b, change.after_b) == (0, 3)

    stored = await reload(ProductVariant, variant.id)
    assert stored.current_stock == 7
    assert stored.damaged_stock == 3

    entries = await fetch_entries(STOCK_LEDGER, variant.id)
    assert len(entries) == 2
    last = entries[-1]
    assert last.quantity_out == 3
    assert last.damaged_change == 3
    assert (last.damaged_before, last.damaged_after) == (0, 3)
    assert last.running_balance == 7


@pytest.mark.asyncio
async def test_two_bucket_clamps_each_bucket(ledger, variant, reload):
    change = await ledger.adjust_two_bucket(variant.id, 5, -4)

    assert change.after_a == 15
    assert change.after_b == 0
    assert change.applied_delta_b == 0

    stored = await reload(ProductVariant, variant.id)
    assert stored.damaged_stock == 0


@pytest.mark.asyncio
async def test_failed_transaction_leaves_no_partial_state(ledger, variant, reload, fetch_entries):
    """Balance write and entry insert commit or roll back together."""
    with pytest.raises(RuntimeError):
        async with ledger.unit_of_work() as db:
            await adjust_stock(db, variant.id, 7)
            raise RuntimeError("caller failed after mutation")

    stored = await reload(ProductVariant, variant.id)
    assert stored.current_stock == 10
    assert len(await fetch_entries(STOCK_LEDGER, variant.id)) == 1


@pytest.mark.asyncio
async def test_stock_saturates_at_column_limit(ledger, variant, reload, fetch_entries):
    """An oversized delta is handled like the floor: the applied delta is recorded."""
    change = await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, variant.id, 2 ** 63)

    assert change.after == STOCK_LIMIT
    assert change.requested_delta == 2 ** 63
    assert change.applied_delta == STOCK_LIMIT - 10
    assert change.clamped

    assert (await reload(ProductVariant, variant.id)).current_stock == STOCK_LIMIT
    last = (await fetch_entries(STOCK_LEDGER, variant.id))[-1]
    assert last.quantity_in == STOCK_LIMIT - 10
    assert last.running_balance == STOCK_LIMIT


@pytest.mark.asyncio
async def test_two_bucket_saturates_each_bucket(ledger, variant, reload):
    change = await ledger.adjust_two_bucket(variant.id, 2 ** 40, 2 ** 63)

    assert change.after_a == STOCK_LIMIT
    assert change.after_b == STOCK_LIMIT
    assert change.applied_delta_b == STOCK_LIMIT

    stored = await reload(ProductVariant, variant.id)
    assert (stored.current_stock, stored.damaged_stock) == (STOCK_LIMIT, STOCK_LIMIT)


@pytest.mark.asyncio
async def test_vendor_balance_saturates_both_ways(ledger, vendor, reload, fetch_entries):
    up = await ledger.adjust_balance(OwningEntityType.ACCOUNT, vendor.id, Decimal("1E+15"))
    assert up.after == MONEY_LIMIT
    assert up.applied_delta == MONEY_LIMIT

    down = await ledger.adjust_balance(OwningEntityType.ACCOUNT, vendor.id, Decimal("-5E+15"))
    # One entry moves at most the column limit
    assert down.applied_delta == -MONEY_LIMIT
    assert down.after == Decimal("0")

    assert (await reload(Vendor, vendor.id)).balance == Decimal("0")
    entries = await fetch_entries(VENDOR_LEDGER, vendor.id)
    assert (entries[0].debit, entries[0].credit) == (MONEY_LIMIT, Decimal("0"))
    assert (entries[1].debit, entries[1].credit) == (Decimal("0"), MONEY_LIMIT)


@pytest.mark.asyncio
async def test_fractional_stock_delta_is_rejected(ledger, variant, reload, fetch_entries):
    with pytest.raises(InvalidAmountError) as exc_info:
        await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, variant.id, 2.9)

    assert exc_info.value.error_code == "ERR_LEDGER_422_AMOUNT"
    assert (await reload(ProductVariant, variant.id)).current_stock == 10
    assert len(await fetch_entries(STOCK_LEDGER, variant.id)) == 1


@pytest.mark.asyncio
async def test_integral_values_of_other_types_are_accepted(ledger, variant):
    change = await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, variant.id, Decimal("3.000"))

    assert change.applied_delta == 3
    assert STOCK_LEDGER.coerce(2.0) == 2


@pytest.mark.parametrize("value", ["nan", "Infinity", "abc", Decimal("-1.5")])
def test_unusable_amounts_are_rejected(value):
    with pytest.raises(InvalidAmountError):
        STOCK_LEDGER.coerce(value)
