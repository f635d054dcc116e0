"""
Stage 2: Delta Rule Tests.

Document -> ledger legs, without a database.
"""

from decimal import Decimal
from types import SimpleNamespace

from ledger_backend.app.domain.ledger.delta_rules import approval_legs, void_legs
from ledger_backend.app.models.ledger_enums import (
    DocumentKind, StockBucket, StockMovementType, VendorLedgerType
)


def make_document(kind, items, vendor_id=None, total_amount=Decimal("0")):
    line_items = [
        SimpleNamespace(
            id=index + 1,
            variant_id=variant_id,
            quantity=quantity,
            decrease_quantity=decrease,
            source_bucket=bucket,
        )
        for index, (variant_id, quantity, decrease, bucket) in enumerate(items)
    ]
    return SimpleNamespace(
        kind=kind, line_items=line_items, vendor_id=vendor_id, total_amount=total_amount
    )


def test_purchase_increases_stock_and_debits_vendor():
    document = make_document(
        DocumentKind.PURCHASE, [(7, 20, 0, StockBucket.FRESH)], vendor_id=3, total_amount=Decimal("500")
    )

    stock_legs, account_leg = approval_legs(document)

    assert len(stock_legs) == 1
    assert stock_legs[0].movement_type == StockMovementType.PURCHASE
    assert stock_legs[0].fresh_delta == 20
    assert not stock_legs[0].two_bucket
    assert account_leg.entry_type == VendorLedgerType.PURCHASE
    assert account_leg.delta == Decimal("500")


def test_return_and_payment_credit_vendor():
    ret = make_document(
        DocumentKind.PURCHASE_RETURN, [(7, 4, 0, StockBucket.FRESH)], vendor_id=3, total_amount=Decimal("100")
    )
    stock_legs, account_leg = approval_legs(ret)
    assert stock_legs[0].fresh_delta == -4
    assert account_leg.delta == Decimal("-100")

    payment = make_document(DocumentKind.PAYMENT, [], vendor_id=3, total_amount=Decimal("200"))
    stock_legs, account_leg = approval_legs(payment)
    assert stock_legs == []
    assert account_leg.entry_type == VendorLedgerType.PAYMENT
    assert account_leg.credit == Decimal("200")


def test_damage_moves_units_between_buckets():
    document = make_document(DocumentKind.DAMAGE, [(7, 4, 0, StockBucket.FRESH)])

    stock_legs, account_leg = approval_legs(document)

    assert account_leg is None
    assert stock_legs[0].two_bucket
    assert (stock_legs[0].fresh_delta, stock_legs[0].damaged_delta) == (-4, 4)


def test_return_from_damaged_bucket():
    document = make_document(DocumentKind.PURCHASE_RETURN, [(7, 2, 0, StockBucket.DAMAGED)])

    leg = approval_legs(document)[0][0]

    assert leg.two_bucket
    assert (leg.fresh_delta, leg.damaged_delta) == (0, -2)


def test_adjustment_nets_increase_and_decrease():
    document = make_document(
        DocumentKind.ADJUSTMENT,
        [(7, 5, 2, StockBucket.FRESH), (8, 0, 4, StockBucket.FRESH)],
    )

    stock_legs, _ = approval_legs(document)

    assert [leg.fresh_delta for leg in stock_legs] == [3, -4]


def test_legs_are_sorted_by_entity():
    """Concurrent documents must lock variants in the same order."""
    document = make_document(
        DocumentKind.PURCHASE,
        [(9, 1, 0, StockBucket.FRESH), (2, 1, 0, StockBucket.FRESH), (5, 1, 0, StockBucket.FRESH)],
    )

    stock_legs, _ = approval_legs(document)

    assert [leg.variant_id for leg in stock_legs] == [2, 5, 9]


def test_void_is_exact_inverse():
    document = make_document(
        DocumentKind.DAMAGE, [(7, 4, 0, StockBucket.FRESH)], vendor_id=None
    )
    approve_stock, _ = approval_legs(document)
    void_stock, _ = void_legs(document)

    assert void_stock[0].movement_type == StockMovementType.VOID_DAMAGE
    assert void_stock[0].fresh_delta == -approve_stock[0].fresh_delta
    assert void_stock[0].damaged_delta == -approve_stock[0].damaged_delta

    purchase = make_document(
        DocumentKind.PURCHASE, [(7, 1, 0, StockBucket.FRESH)], vendor_id=3, total_amount=Decimal("50")
    )
    _, account_leg = void_legs(purchase)
    assert account_leg.entry_type == VendorLedgerType.VOID_PURCHASE
    assert account_leg.delta == Decimal("-50")


def test_no_vendor_leg_without_vendor_or_amount():
    document = make_document(DocumentKind.PURCHASE, [(7, 1, 0, StockBucket.FRESH)], vendor_id=3)

    assert approval_legs(document)[1] is None
