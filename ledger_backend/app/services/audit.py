"""
Audit logging service for ledger-affecting actions.

Provides centralized audit records for document transitions, manual
adjustments and reconciliation runs. Records are added to the caller's
session and committed with the business change they describe.
"""

from typing import Optional, Dict, Any, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from ledger_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    DOCUMENT_CREATED = "DOCUMENT_CREATED"
    DOCUMENT_APPROVED = "DOCUMENT_APPROVED"
    DOCUMENT_REJECTED = "DOCUMENT_REJECTED"
    DOCUMENT_VOIDED = "DOCUMENT_VOIDED"

    STOCK_UNIT_REGISTERED = "STOCK_UNIT_REGISTERED"
    ACCOUNT_REGISTERED = "ACCOUNT_REGISTERED"
    BALANCE_ADJUSTED = "BALANCE_ADJUSTED"

    LEDGER_RECONCILED = "LEDGER_RECONCILED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    document_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Record an audit event in the current transaction.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for system)
        document_id: Source document acted upon (if applicable)
        entity_type: Owning entity type acted upon (if applicable)
        entity_id: Owning entity acted upon (if applicable)
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        document_id=document_id,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_document_history(
    db: AsyncSession,
    document_id: int,
    limit: int = 100
) -> List[AuditLog]:
    """
    Retrieve audit events for one source document, newest first.

    Args:
        db: Database session
        document_id: Document to look up
        limit: Maximum number of records to return

    Returns:
        List of AuditLog records
    """
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.document_id == document_id)
        .order_by(desc(AuditLog.timestamp), desc(AuditLog.id))
        .limit(limit)
    )
    return list(result.scalars().all())
