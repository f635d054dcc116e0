"""
Ledger enumerations.
"""

import enum


class OwningEntityType(str, enum.Enum):
    """Kinds of entity that carry a cached balance."""
    STOCK_UNIT = "STOCK_UNIT"  # Product variant, balance = units on hand
    ACCOUNT = "ACCOUNT"  # Vendor, balance = amount payable (signed)


class DocumentKind(str, enum.Enum):
    """Source document type enumeration."""
    PURCHASE = "PURCHASE"
    PURCHASE_RETURN = "PURCHASE_RETURN"
    DAMAGE = "DAMAGE"
    ADJUSTMENT = "ADJUSTMENT"
    PAYMENT = "PAYMENT"


class DocumentStatus(str, enum.Enum):
    """Source document lifecycle: PENDING -> APPROVED -> VOIDED, or PENDING -> REJECTED."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    VOIDED = "VOIDED"


class StockBucket(str, enum.Enum):
    """Which stock bucket a line item draws from."""
    FRESH = "FRESH"
    DAMAGED = "DAMAGED"


class MovementDirection(str, enum.Enum):
    """Audit label for the net sign of a stock movement."""
    IN = "IN"
    OUT = "OUT"


class StockMovementType(str, enum.Enum):
    """Stock ledger entry kinds."""
    OPENING_BALANCE = "OPENING_BALANCE"
    PURCHASE = "PURCHASE"
    PURCHASE_RETURN = "PURCHASE_RETURN"
    DAMAGE = "DAMAGE"
    ADJUSTMENT = "ADJUSTMENT"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    VOID_PURCHASE = "VOID_PURCHASE"
    VOID_PURCHASE_RETURN = "VOID_PURCHASE_RETURN"
    VOID_DAMAGE = "VOID_DAMAGE"
    VOID_ADJUSTMENT = "VOID_ADJUSTMENT"


class VendorLedgerType(str, enum.Enum):
    """Vendor ledger entry kinds. DEBIT raises the payable, CREDIT lowers it."""
    OPENING_BALANCE = "OPENING_BALANCE"
    PURCHASE = "PURCHASE"
    PURCHASE_RETURN = "PURCHASE_RETURN"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    VOID_PURCHASE = "VOID_PURCHASE"
    VOID_RETURN = "VOID_RETURN"
    VOID_PAYMENT = "VOID_PAYMENT"
