"""
Catalog and document intake service.

Registers owning entities (with their opening balance entry) and stores
pending source documents. Nothing here approves a document; ledger effects
belong to the document sync service.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import EntityNotFoundError, InvalidDocumentError
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.models.document_line_item import DocumentLineItem
from ledger_backend.app.models.ledger_enums import (
    DocumentKind, OwningEntityType, StockBucket, StockMovementType, VendorLedgerType
)
from ledger_backend.app.models.product_variant import ProductVariant
from ledger_backend.app.models.source_document import SourceDocument
from ledger_backend.app.models.vendor import Vendor
from ledger_backend.app.schemas.documents import AccountCreate, DocumentCreate, StockUnitCreate
from ledger_backend.app.services.atomic_mutator import (
    adjust_stock, adjust_vendor_balance, split_signed_amount
)
from ledger_backend.app.services.audit import log_event, AuditAction

_REFERENCE_PREFIX = {
    DocumentKind.PURCHASE: "PUR",
    DocumentKind.PURCHASE_RETURN: "RET",
    DocumentKind.DAMAGE: "DMG",
    DocumentKind.ADJUSTMENT: "ADJ",
    DocumentKind.PAYMENT: "PAY",
}

# Kinds whose total_amount is the cost of their lines
_COSTED_KINDS = (DocumentKind.PURCHASE, DocumentKind.PURCHASE_RETURN, DocumentKind.DAMAGE)


async def register_stock_unit(
    db: AsyncSession,
    data: StockUnitCreate,
    performed_by: Optional[int] = None
) -> ProductVariant:
    """
    Create a product variant and post its opening stock.

    The variant starts at zero and the opening stock goes through the atomic
    mutator, so the ledger explains the balance from its first entry.
    """
    variant = ProductVariant(
        sku=data.sku,
        name=data.name,
        cost_price=data.cost_price,
        selling_price=data.selling_price,
        current_stock=0,
        damaged_stock=0,
        reorder_level=(
            data.reorder_level if data.reorder_level is not None else settings.default_reorder_level
        ),
        is_active=True,
    )
    db.add(variant)
    await db.flush()

    if data.opening_stock:
        await adjust_stock(
            db,
            variant.id,
            data.opening_stock,
            movement_type=StockMovementType.OPENING_BALANCE,
            reason="Opening balance",
            performed_by=performed_by,
        )

    await log_event(
        db,
        AuditAction.STOCK_UNIT_REGISTERED,
        actor_id=performed_by,
        entity_type=OwningEntityType.STOCK_UNIT.value,
        entity_id=variant.id,
        metadata={"sku": data.sku, "opening_stock": data.opening_stock},
    )
    return variant


async def register_account(
    db: AsyncSession,
    data: AccountCreate,
    performed_by: Optional[int] = None
) -> Vendor:
    """Create a vendor account and post its opening balance."""
    vendor = Vendor(
        name=data.name,
        balance=Decimal("0"),
        total_purchases=Decimal("0"),
        total_returns=Decimal("0"),
        total_payments=Decimal("0"),
        is_active=True,
    )
    db.add(vendor)
    await db.flush()

    if data.opening_balance:
        debit, credit = split_signed_amount(data.opening_balance)
        await adjust_vendor_balance(
            db,
            vendor.id,
            debit=debit,
            credit=credit,
            entry_type=VendorLedgerType.OPENING_BALANCE,
            description="Opening balance",
            performed_by=performed_by,
        )

    await log_event(
        db,
        AuditAction.ACCOUNT_REGISTERED,
        actor_id=performed_by,
        entity_type=OwningEntityType.ACCOUNT.value,
        entity_id=vendor.id,
        metadata={"name": data.name, "opening_balance": str(data.opening_balance)},
    )
    return vendor


def validate_document(data: DocumentCreate) -> None:
    """
    Check the business rules a pending document must satisfy.

    Raises:
        InvalidDocumentError: On the first rule the payload breaks
    """
    if data.kind == DocumentKind.PAYMENT:
        if data.vendor_id is None:
            raise InvalidDocumentError("Payment requires a vendor")
        if not data.total_amount or data.total_amount <= 0:
            raise InvalidDocumentError(
                "Payment amount must be greater than zero",
                details={"total_amount": str(data.total_amount)}
            )
        if data.line_items:
            raise InvalidDocumentError("Payments do not carry line items")
        return

    if not data.line_items:
        raise InvalidDocumentError(f"{data.kind.value} document has no line items")

    for index, item in enumerate(data.line_items):
        details = {"line": index, "variant_id": item.variant_id}

        if data.kind == DocumentKind.ADJUSTMENT:
            if item.quantity == 0 and item.decrease_quantity == 0:
                raise InvalidDocumentError("Adjustment line moves no stock", details=details)
            continue

        if item.quantity <= 0:
            raise InvalidDocumentError("Quantity must be greater than zero", details=details)
        if item.decrease_quantity:
            raise InvalidDocumentError(
                "decrease_quantity is only valid on adjustments", details=details
            )
        if item.source_bucket == StockBucket.DAMAGED and data.kind != DocumentKind.PURCHASE_RETURN:
            raise InvalidDocumentError(
                "Only purchase returns may draw from the damaged bucket", details=details
            )


def generate_reference_no(kind: DocumentKind) -> str:
    """Generate a reference number like PUR-20240131-1A2B3C."""
    return f"{_REFERENCE_PREFIX[kind]}-{utcnow():%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


async def create_document(
    db: AsyncSession,
    data: DocumentCreate,
    performed_by: Optional[int] = None
) -> SourceDocument:
    """
    Validate and store a PENDING source document.

    Line item entities are not checked here: a document referencing a
    missing variant is accepted and fails at approval.

    Raises:
        InvalidDocumentError: Payload breaks a business rule
        EntityNotFoundError: Vendor does not exist
    """
    validate_document(data)

    if data.vendor_id is not None:
        vendor = await db.get(Vendor, data.vendor_id)
        if vendor is None:
            raise EntityNotFoundError("Vendor", data.vendor_id)

    if data.kind == DocumentKind.PAYMENT:
        total_amount = data.total_amount
        total_quantity = 0
    else:
        total_quantity = sum(item.quantity - item.decrease_quantity for item in data.line_items)
        total_amount = Decimal("0")
        if data.kind in _COSTED_KINDS:
            total_amount = sum(
                (item.unit_cost * item.quantity for item in data.line_items), Decimal("0")
            )

    document = SourceDocument(
        kind=data.kind,
        reference_no=data.reference_no or generate_reference_no(data.kind),
        vendor_id=data.vendor_id,
        total_amount=total_amount,
        total_quantity=total_quantity,
        payment_method=data.payment_method,
        notes=data.notes,
        occurred_at=data.occurred_at or utcnow(),
        performed_by=performed_by,
        line_items=[
            DocumentLineItem(
                variant_id=item.variant_id,
                quantity=item.quantity,
                decrease_quantity=item.decrease_quantity,
                unit_cost=item.unit_cost,
                source_bucket=item.source_bucket,
                notes=item.notes,
            )
            for item in data.line_items
        ],
    )
    db.add(document)
    await db.flush()

    await log_event(
        db,
        AuditAction.DOCUMENT_CREATED,
        actor_id=performed_by,
        document_id=document.id,
        metadata={
            "kind": data.kind.value,
            "reference_no": document.reference_no,
            "total_amount": str(total_amount),
            "lines": len(data.line_items),
        },
    )
    return document
