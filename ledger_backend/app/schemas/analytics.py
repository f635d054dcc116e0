"""
Analytics Schemas.

Financial fields are typed Redacted: either the value or the redaction
sentinel string, depending on the viewer's role.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from ledger_backend.app.models.ledger_enums import DocumentKind, DocumentStatus, VendorLedgerType

Redacted = Union[Decimal, str]


class MovementKindTotal(BaseModel):
    """Period-over-period totals for one stock movement kind."""
    kind: str
    units_in: int
    units_out: int
    entry_count: int
    value: Redacted
    previous_units_in: int
    previous_units_out: int
    previous_entry_count: int
    previous_value: Redacted


class LowStockItem(BaseModel):
    variant_id: int
    sku: str
    name: str
    current_stock: int
    reorder_level: int
    cost_price: Redacted
    selling_price: Decimal


class RecentDocument(BaseModel):
    id: int
    reference_no: str
    kind: DocumentKind
    status: DocumentStatus
    total_amount: Redacted
    occurred_at: datetime
    vendor_name: Optional[str] = None


class TimeSeriesPoint(BaseModel):
    bucket_start: datetime
    label: str
    units_in: int
    units_out: int
    net_units: int


class DashboardSummary(BaseModel):
    """Dashboard rollup for one date window."""
    start: datetime
    end: datetime
    previous_start: datetime
    granularity: str
    viewer_role: str

    total_stock_value: Redacted
    total_stock_units: int
    total_damaged_units: int
    active_variants: int
    total_payables: Redacted

    movement_totals: List[MovementKindTotal]
    purchase_trend_percent: float

    low_stock_count: int
    low_stock: List[LowStockItem]
    out_of_stock_count: int
    pending_approvals: int
    recent_documents: List[RecentDocument]

    time_series: List[TimeSeriesPoint]
    generated_at: datetime


class MovementReportRow(BaseModel):
    """Opening / in / out / closing for one variant over a window."""
    variant_id: int
    sku: str
    name: str
    opening: int
    units_in: int
    units_out: int
    closing: int
    entry_count: int


class StatementEntry(BaseModel):
    id: int
    entry_type: VendorLedgerType
    debit: Decimal
    credit: Decimal
    running_balance: Decimal
    reference_no: Optional[str]
    description: Optional[str]
    occurred_at: datetime

    class Config:
        from_attributes = True


class AccountStatement(BaseModel):
    """Vendor statement over a window."""
    vendor_id: int
    vendor_name: str
    start: datetime
    end: datetime
    opening_balance: Decimal
    total_debit: Decimal
    total_credit: Decimal
    closing_balance: Decimal
    entries: List[StatementEntry]
