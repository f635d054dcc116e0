"""
Stock Movement database model.

Append-only ledger for product variant stock.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, UniqueConstraint, Index
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.models.ledger_enums import StockMovementType, MovementDirection


class StockMovement(Base):
    """
    Stock Movement model.

    Immutable record of one change to a variant's stock. The signed change is
    split into quantity_in / quantity_out (both non-negative) and the entry
    carries the before/after snapshot taken under the row lock.
    Only running_balance may be rewritten, and only by the recompute job.
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Owning entity
    variant_id = Column(Integer, ForeignKey('product_variants.id'), nullable=False, index=True)

    # Classification
    movement_type = Column(Enum(StockMovementType), nullable=False, index=True)
    direction = Column(Enum(MovementDirection), nullable=False)

    # Fresh bucket magnitudes (clamped, as actually applied)
    quantity_in = Column(Integer, nullable=False, default=0)
    quantity_out = Column(Integer, nullable=False, default=0)
    stock_before = Column(Integer, nullable=False)
    stock_after = Column(Integer, nullable=False)

    # Damaged bucket (two-bucket mutations only)
    damaged_change = Column(Integer, nullable=False, default=0)
    damaged_before = Column(Integer, nullable=True)
    damaged_after = Column(Integer, nullable=True)

    running_balance = Column(Integer, nullable=False, default=0)

    # Source linkage (NULL for manual adjustments and opening balances)
    source_document_id = Column(Integer, ForeignKey('source_documents.id'), nullable=True, index=True)
    source_line_item_id = Column(Integer, ForeignKey('document_line_items.id'), nullable=True)

    reason = Column(String(255), nullable=True)
    performed_by = Column(Integer, nullable=True)

    # occurred_at is the business event time, created_at the insertion time
    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            'source_document_id', 'source_line_item_id', 'movement_type',
            name='uq_stock_movements_source_kind'
        ),
        Index('ix_stock_movements_variant_order', 'variant_id', 'occurred_at', 'created_at'),
    )

    @property
    def net_change(self) -> int:
        return (self.quantity_in or 0) - (self.quantity_out or 0)

    def __repr__(self):
        return f"<StockMovement(id={self.id}, type='{self.movement_type.value}', in={self.quantity_in}, out={self.quantity_out}, running={self.running_balance})>"
