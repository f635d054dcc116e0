"""
Dead Letter Queue (DLQ) Model.

One row per reconciliation unit (a document backfill or an entity
recompute/resync) that failed during a run. The run skips the unit and moves
on; the row keeps enough to replay it.
"""

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
from ledger_backend.app.db.session import Base
from ledger_backend.app.core.timeutils import utcnow
import enum


class DLQStatus(str, enum.Enum):
    FAILED = "FAILED"
    REPLAYED = "REPLAYED"
    DISCARDED = "DISCARDED"


class DeadLetterQueue(Base):
    """Failed reconciliation units."""
    __tablename__ = "dead_letter_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # ledger.backfill_document / ledger.reconcile_entity
    task_name = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(20), nullable=True, index=True)
    entity_id = Column(Integer, nullable=True)
    document_id = Column(Integer, nullable=True, index=True)

    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    status = Column(Enum(DLQStatus), default=DLQStatus.FAILED, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        target = f"document={self.document_id}" if self.document_id else f"{self.entity_type}={self.entity_id}"
        return f"<DLQ(id={self.id}, task='{self.task_name}', {target}, status='{self.status}')>"
