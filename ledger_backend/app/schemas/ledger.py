"""
Ledger Schemas.

Results returned by the atomic mutator and the synchronization hook.
"""

from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Union

from ledger_backend.app.models.ledger_enums import OwningEntityType, DocumentStatus, DocumentKind

Amount = Union[int, Decimal]


class BalanceChange(BaseModel):
    """Before/after pair for a single-bucket mutation."""
    entity_type: OwningEntityType
    entity_id: int
    before: Amount
    after: Amount
    requested_delta: Amount
    applied_delta: Amount
    ledger_entry_id: Optional[int] = None

    @property
    def clamped(self) -> bool:
        return self.requested_delta != self.applied_delta


class TwoBucketChange(BaseModel):
    """Before/after pairs for a fresh + damaged stock mutation."""
    entity_id: int
    before_a: int
    after_a: int
    before_b: int
    after_b: int
    applied_delta_a: int
    applied_delta_b: int
    ledger_entry_id: int


class AppliedLineItem(BaseModel):
    """One ledger effect of a document transition."""
    line_item_id: Optional[int] = None
    entity_type: OwningEntityType
    entity_id: int
    entry_kind: str
    requested_delta: Amount
    applied_delta: Amount
    balance_before: Amount
    balance_after: Amount
    damaged_before: Optional[int] = None
    damaged_after: Optional[int] = None
    ledger_entry_id: int


class DocumentTransitionResult(BaseModel):
    """Outcome of approving or voiding a source document."""
    document_id: int
    kind: DocumentKind
    status: DocumentStatus
    transitioned_at: datetime
    line_items: List[AppliedLineItem]


class ReconciliationFailure(BaseModel):
    """One unit of reconciliation work that was skipped."""
    task: str
    entity_type: Optional[OwningEntityType] = None
    entity_id: Optional[int] = None
    document_id: Optional[int] = None
    error: str
    dead_letter_id: Optional[int] = None


class ReconciliationReport(BaseModel):
    """Summary of a reconciliation pass."""
    backfilled_entries: int = 0
    recomputed_entities: int = 0
    rewritten_running_balances: int = 0
    resynced_entities: int = 0
    corrected_balances: int = 0
    failures: List[ReconciliationFailure] = []
