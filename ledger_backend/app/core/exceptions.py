"""
Ledger exceptions with stable error codes.

Every failure the engine raises derives from AppException so callers can
surface a consistent {error_code, message, details} payload.
"""

from typing import Any, Dict


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        details: Dict[str, Any] = None,
        retryable: bool = False
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.retryable = retryable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


class EntityNotFoundError(AppException):
    """Raised when a referenced owning entity (stock unit or account) is absent."""

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found"
        if entity_id is not None:
            message = f"{entity} with ID {entity_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_404_ENTITY",
            details={"entity": entity, "id": entity_id}
        )


class DocumentNotFoundError(AppException):
    """Raised when a source document does not exist."""

    def __init__(self, document_id: Any):
        super().__init__(
            message=f"Source document with ID {document_id} not found",
            error_code="ERR_LEDGER_404_DOCUMENT",
            details={"document_id": document_id}
        )


class InvalidTransitionError(AppException):
    """Raised when a document status transition is not allowed."""


class DocumentNotPendingError(InvalidTransitionError):

    def __init__(self, document_id: Any, status: Any):
        super().__init__(
            message=f"Document {document_id} is not PENDING. Current status: {status}",
            error_code="ERR_LEDGER_409_NOT_PENDING",
            details={"document_id": document_id, "status": str(status)}
        )


class DocumentNotApprovedError(InvalidTransitionError):

    def __init__(self, document_id: Any, status: Any):
        super().__init__(
            message=f"Document {document_id} is not APPROVED. Current status: {status}",
            error_code="ERR_LEDGER_409_NOT_APPROVED",
            details={"document_id": document_id, "status": str(status)}
        )


class LockTimeoutError(AppException):
    """
    Raised when an entity lock could not be acquired in time.

    No partial state is visible when this is raised, so the whole
    operation may be retried.
    """

    def __init__(self, entity: str, entity_id: Any, timeout: float):
        super().__init__(
            message=f"Timed out after {timeout}s waiting for lock on {entity} {entity_id}",
            error_code="ERR_LEDGER_423_LOCK_TIMEOUT",
            details={"entity": entity, "id": entity_id, "timeout": timeout},
            retryable=True
        )


class RedactionPolicyViolation(AppException):
    """Raised by the report layer when a viewer may not see a financial field."""

    def __init__(self, field: str, role: Any = None):
        super().__init__(
            message=f"Field '{field}' is restricted for role {role}",
            error_code="ERR_LEDGER_403_REDACTED",
            details={"field": field, "role": str(role) if role is not None else None}
        )


class InvalidDocumentError(AppException):
    """Raised when a source document payload fails validation."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_LEDGER_422_DOCUMENT",
            details=details
        )


class InvalidAmountError(AppException):
    """Raised when a delta is not a usable number for the ledger it targets."""

    def __init__(self, value: Any, entity: str):
        super().__init__(
            message=f"Invalid amount {value!r} for {entity}",
            error_code="ERR_LEDGER_422_AMOUNT",
            details={"value": str(value), "entity": entity}
        )
