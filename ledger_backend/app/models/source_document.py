"""
Source Document database model.

Business documents (purchases, returns, damages, adjustments, vendor payments)
whose approval drives ledger writes.
"""

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, Enum, Numeric
from sqlalchemy.orm import relationship
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.models.ledger_enums import DocumentKind, DocumentStatus


class SourceDocument(Base):
    """
    Source Document model.

    Follows a strict workflow: PENDING -> APPROVED -> VOIDED, or PENDING -> REJECTED.
    Ledger effects happen only on the APPROVED and VOIDED transitions.
    """
    __tablename__ = "source_documents"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    kind = Column(Enum(DocumentKind), nullable=False, index=True)
    reference_no = Column(String(50), unique=True, nullable=False)
    status = Column(Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False, index=True)

    # Counterparty (purchases, returns, payments)
    vendor_id = Column(Integer, ForeignKey('vendors.id'), nullable=True, index=True)

    # Totals
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)

    # Business event time
    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    performed_by = Column(Integer, nullable=True)

    # Approval Flow
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)

    # Rejection Flow
    rejected_by = Column(Integer, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Void Flow
    voided_by = Column(Integer, nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    void_reason = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    line_items = relationship(
        "DocumentLineItem",
        back_populates="document",
        order_by="DocumentLineItem.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<SourceDocument(id={self.id}, kind='{self.kind.value}', status='{self.status.value}')>"
