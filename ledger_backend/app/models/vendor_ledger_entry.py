"""
Vendor Ledger Entry database model.

Append-only ledger for vendor balances.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Numeric, UniqueConstraint, Index
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.models.ledger_enums import VendorLedgerType


class VendorLedgerEntry(Base):
    """
    Vendor Ledger Entry model.

    DEBIT increases what we owe the vendor, CREDIT decreases it.
    NO updates or deletions allowed, except running_balance recomputation.
    """
    __tablename__ = "vendor_ledger"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Owning entity
    vendor_id = Column(Integer, ForeignKey('vendors.id'), nullable=False, index=True)

    entry_type = Column(Enum(VendorLedgerType), nullable=False, index=True)

    # Financials
    debit = Column(Numeric(14, 2), nullable=False, default=0)
    credit = Column(Numeric(14, 2), nullable=False, default=0)
    balance_before = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    running_balance = Column(Numeric(14, 2), nullable=False, default=0)

    # Source linkage
    source_document_id = Column(Integer, ForeignKey('source_documents.id'), nullable=True, index=True)
    reference_no = Column(String(50), nullable=True)
    description = Column(String(255), nullable=True)
    performed_by = Column(Integer, nullable=True)

    # Timestamps (Immutable - no updated_at)
    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('source_document_id', 'entry_type', name='uq_vendor_ledger_source_kind'),
        Index('ix_vendor_ledger_vendor_order', 'vendor_id', 'occurred_at', 'created_at'),
    )

    def __repr__(self):
        return f"<VendorLedgerEntry(id={self.id}, type='{self.entry_type.value}', debit={self.debit}, credit={self.credit})>"
