"""
Vendor database model.

The money-type owning entity: balance is the amount payable to the vendor
and may go negative (vendor owes us).
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow


class Vendor(Base):
    """Vendor (Account) model with denormalized lifetime totals."""
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)

    # Balance cache (signed: positive = payable, negative = receivable)
    balance = Column(Numeric(14, 2), nullable=False, default=0)

    # Lifetime totals by category
    total_purchases = Column(Numeric(14, 2), nullable=False, default=0)
    total_returns = Column(Numeric(14, 2), nullable=False, default=0)
    total_payments = Column(Numeric(14, 2), nullable=False, default=0)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Vendor(id={self.id}, name='{self.name}', balance={self.balance})>"
