"""
Delta rules for source documents.

Pure functions: a document in, the list of ledger legs it implies out.
Approval and void are derived from the same rules, void with every sign
inverted, so a void is always the algebraic inverse of the approval.
"""

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import List, Optional, Tuple

from ledger_backend.app.models.ledger_enums import (
    DocumentKind, StockBucket, StockMovementType, VendorLedgerType
)

_APPROVAL_MOVEMENT = {
    DocumentKind.PURCHASE: StockMovementType.PURCHASE,
    DocumentKind.PURCHASE_RETURN: StockMovementType.PURCHASE_RETURN,
    DocumentKind.DAMAGE: StockMovementType.DAMAGE,
    DocumentKind.ADJUSTMENT: StockMovementType.ADJUSTMENT,
}

_VOID_MOVEMENT = {
    StockMovementType.PURCHASE: StockMovementType.VOID_PURCHASE,
    StockMovementType.PURCHASE_RETURN: StockMovementType.VOID_PURCHASE_RETURN,
    StockMovementType.DAMAGE: StockMovementType.VOID_DAMAGE,
    StockMovementType.ADJUSTMENT: StockMovementType.VOID_ADJUSTMENT,
}

_APPROVAL_VENDOR_ENTRY = {
    DocumentKind.PURCHASE: VendorLedgerType.PURCHASE,
    DocumentKind.PURCHASE_RETURN: VendorLedgerType.PURCHASE_RETURN,
    DocumentKind.PAYMENT: VendorLedgerType.PAYMENT,
}

_VOID_VENDOR_ENTRY = {
    VendorLedgerType.PURCHASE: VendorLedgerType.VOID_PURCHASE,
    VendorLedgerType.PURCHASE_RETURN: VendorLedgerType.VOID_RETURN,
    VendorLedgerType.PAYMENT: VendorLedgerType.VOID_PAYMENT,
}


@dataclass(frozen=True)
class StockLeg:
    """Stock effect of one line item."""
    line_item_id: Optional[int]
    variant_id: int
    movement_type: StockMovementType
    fresh_delta: int
    damaged_delta: int = 0
    two_bucket: bool = False

    def inverted(self) -> "StockLeg":
        return replace(
            self,
            movement_type=_VOID_MOVEMENT[self.movement_type],
            fresh_delta=-self.fresh_delta,
            damaged_delta=-self.damaged_delta,
        )


@dataclass(frozen=True)
class AccountLeg:
    """Vendor effect of a whole document."""
    vendor_id: int
    entry_type: VendorLedgerType
    debit: Decimal
    credit: Decimal

    @property
    def delta(self) -> Decimal:
        return self.debit - self.credit

    def inverted(self) -> "AccountLeg":
        return replace(
            self,
            entry_type=_VOID_VENDOR_ENTRY[self.entry_type],
            debit=self.credit,
            credit=self.debit,
        )


def line_item_stock_leg(kind: DocumentKind, line_item) -> StockLeg:
    """
    Compute the approval-time stock leg for one line item.

    purchase -> +quantity fresh
    purchase_return -> -quantity from the bucket it was sourced from
    damage -> -quantity fresh, +quantity damaged
    adjustment -> quantity - decrease_quantity fresh
    """
    movement_type = _APPROVAL_MOVEMENT[kind]
    quantity = abs(int(line_item.quantity or 0))

    if kind == DocumentKind.PURCHASE:
        return StockLeg(line_item.id, line_item.variant_id, movement_type, quantity)

    if kind == DocumentKind.PURCHASE_RETURN:
        if line_item.source_bucket == StockBucket.DAMAGED:
            return StockLeg(
                line_item.id, line_item.variant_id, movement_type,
                fresh_delta=0, damaged_delta=-quantity, two_bucket=True
            )
        return StockLeg(line_item.id, line_item.variant_id, movement_type, -quantity)

    if kind == DocumentKind.DAMAGE:
        return StockLeg(
            line_item.id, line_item.variant_id, movement_type,
            fresh_delta=-quantity, damaged_delta=quantity, two_bucket=True
        )

    # Adjustment: two independent magnitudes, net decides in/out labelling
    decrease = abs(int(line_item.decrease_quantity or 0))
    return StockLeg(line_item.id, line_item.variant_id, movement_type, quantity - decrease)


def document_account_leg(document) -> Optional[AccountLeg]:
    """Vendor leg of a document, if it has one."""
    entry_type = _APPROVAL_VENDOR_ENTRY.get(document.kind)
    if entry_type is None or document.vendor_id is None:
        return None

    amount = Decimal(str(document.total_amount or 0))
    if amount == 0:
        return None

    if document.kind == DocumentKind.PURCHASE:
        return AccountLeg(document.vendor_id, entry_type, debit=amount, credit=Decimal("0"))
    return AccountLeg(document.vendor_id, entry_type, debit=Decimal("0"), credit=amount)


def approval_legs(document) -> Tuple[List[StockLeg], Optional[AccountLeg]]:
    """
    All legs applied when a document is approved.

    Stock legs come back ordered by (variant_id, line_item_id) so concurrent
    documents always lock entities in the same order.
    """
    stock_legs: List[StockLeg] = []
    if document.kind in _APPROVAL_MOVEMENT:
        stock_legs = [line_item_stock_leg(document.kind, item) for item in document.line_items]
        stock_legs.sort(key=lambda leg: (leg.variant_id, leg.line_item_id or 0))
    return stock_legs, document_account_leg(document)


def void_legs(document) -> Tuple[List[StockLeg], Optional[AccountLeg]]:
    """Approval legs recomputed from the document with every sign inverted."""
    stock_legs, account_leg = approval_legs(document)
    return (
        [leg.inverted() for leg in stock_legs],
        account_leg.inverted() if account_leg is not None else None,
    )
