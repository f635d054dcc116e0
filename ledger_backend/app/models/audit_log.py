"""
Audit Log Database Model.

Tracks document transitions, manual balance adjustments and reconciliation runs.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow


class AuditLog(Base):
    """
    Audit log model for ledger-affecting actions.

    Events logged:
    - DOCUMENT_CREATED / DOCUMENT_APPROVED / DOCUMENT_REJECTED / DOCUMENT_VOIDED
    - BALANCE_ADJUSTED (manual stock / vendor adjustments)
    - LEDGER_RECONCILED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    document_id = Column(Integer, index=True, nullable=True)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, document={self.document_id})>"
