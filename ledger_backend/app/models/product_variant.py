"""
Product Variant database model.

The stock-type owning entity: current_stock and damaged_stock are the
balance cache for the stock_movements ledger.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, CheckConstraint
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow


class ProductVariant(Base):
    """
    Product Variant (Stock Unit) model.

    Balances are never written directly; every change goes through the
    atomic mutator so a stock movement is recorded alongside it.
    """
    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sku = Column(String(100), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)

    # Pricing
    cost_price = Column(Numeric(12, 2), nullable=False, default=0)
    selling_price = Column(Numeric(12, 2), nullable=False, default=0)

    # Balance cache (two buckets)
    current_stock = Column(Integer, nullable=False, default=0)
    damaged_stock = Column(Integer, nullable=False, default=0)
    reorder_level = Column(Integer, nullable=False, default=10)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="positive_stock"),
        CheckConstraint("damaged_stock >= 0", name="positive_damaged"),
        CheckConstraint("cost_price >= 0 AND selling_price >= 0", name="valid_prices"),
    )

    def __repr__(self):
        return f"<ProductVariant(id={self.id}, sku='{self.sku}', stock={self.current_stock}, damaged={self.damaged_stock})>"
