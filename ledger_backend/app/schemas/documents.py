"""
Catalog and Source Document Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from ledger_backend.app.models.ledger_enums import DocumentKind, DocumentStatus, StockBucket


class StockUnitCreate(BaseModel):
    """Schema for registering a product variant."""
    sku: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    opening_stock: int = Field(default=0, ge=0, description="Units on hand at registration")
    cost_price: Decimal = Field(default=Decimal("0"), ge=0)
    selling_price: Decimal = Field(default=Decimal("0"), ge=0)
    reorder_level: Optional[int] = Field(default=None, ge=0, description="Defaults to the configured reorder level")


class StockUnitResponse(BaseModel):
    """Schema for displaying a product variant."""
    id: int
    sku: str
    name: str
    cost_price: Decimal
    selling_price: Decimal
    current_stock: int
    damaged_stock: int
    reorder_level: int
    is_active: bool

    class Config:
        from_attributes = True


class AccountCreate(BaseModel):
    """Schema for registering a vendor account."""
    name: str = Field(..., min_length=1, max_length=255)
    opening_balance: Decimal = Field(default=Decimal("0"), description="Signed: positive = payable")


class AccountResponse(BaseModel):
    """Schema for displaying a vendor account."""
    id: int
    name: str
    balance: Decimal
    total_purchases: Decimal
    total_returns: Decimal
    total_payments: Decimal
    is_active: bool

    class Config:
        from_attributes = True


class LineItemCreate(BaseModel):
    """One line of a source document."""
    variant_id: int
    quantity: int = Field(default=0, ge=0, description="Magnitude; the increase side for adjustments")
    decrease_quantity: int = Field(default=0, ge=0, description="Adjustments only")
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    source_bucket: StockBucket = StockBucket.FRESH
    notes: Optional[str] = Field(default=None, max_length=255)


class DocumentCreate(BaseModel):
    """Schema for creating a pending source document."""
    kind: DocumentKind
    reference_no: Optional[str] = Field(default=None, max_length=50)
    vendor_id: Optional[int] = None
    line_items: List[LineItemCreate] = []
    total_amount: Optional[Decimal] = Field(default=None, ge=0, description="Payments only")
    payment_method: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = None
    occurred_at: Optional[datetime] = None


class LineItemResponse(BaseModel):
    id: int
    variant_id: int
    quantity: int
    decrease_quantity: int
    unit_cost: Decimal
    source_bucket: StockBucket

    class Config:
        from_attributes = True


class DocumentResponse(BaseModel):
    """Schema for displaying a source document."""
    id: int
    kind: DocumentKind
    reference_no: str
    status: DocumentStatus
    vendor_id: Optional[int]
    total_amount: Decimal
    total_quantity: int
    occurred_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    line_items: List[LineItemResponse] = []

    class Config:
        from_attributes = True
