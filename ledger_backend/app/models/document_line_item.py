"""
Document Line Item database model.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, Enum, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from ledger_backend.app.db.session import Base
from ledger_backend.app.models.ledger_enums import StockBucket


class DocumentLineItem(Base):
    """
    One product variant line on a source document.

    quantity is the magnitude for purchases, returns and damages. Adjustments
    carry two independent magnitudes: quantity (increase) and
    decrease_quantity (decrease).
    """
    __tablename__ = "document_line_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    document_id = Column(Integer, ForeignKey('source_documents.id'), nullable=False, index=True)
    variant_id = Column(Integer, nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=0)
    decrease_quantity = Column(Integer, nullable=False, default=0)
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    source_bucket = Column(Enum(StockBucket), nullable=False, default=StockBucket.FRESH)
    notes = Column(String(255), nullable=True)

    document = relationship("SourceDocument", back_populates="line_items")

    __table_args__ = (
        CheckConstraint("quantity >= 0 AND decrease_quantity >= 0", name="non_negative_quantities"),
    )

    def __repr__(self):
        return f"<DocumentLineItem(id={self.id}, variant_id={self.variant_id}, qty={self.quantity}, dec={self.decrease_quantity})>"
