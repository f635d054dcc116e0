"""
Model registry.

Import every model so they are registered with Base before create_all.
"""

from ledger_backend.app.models.product_variant import ProductVariant  # noqa: F401
from ledger_backend.app.models.vendor import Vendor  # noqa: F401
from ledger_backend.app.models.source_document import SourceDocument  # noqa: F401
from ledger_backend.app.models.document_line_item import DocumentLineItem  # noqa: F401
from ledger_backend.app.models.stock_movement import StockMovement  # noqa: F401
from ledger_backend.app.models.vendor_ledger_entry import VendorLedgerEntry  # noqa: F401
from ledger_backend.app.models.audit_log import AuditLog  # noqa: F401
from ledger_backend.app.models.dlq import DeadLetterQueue  # noqa: F401
