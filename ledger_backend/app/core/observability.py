"""
Observability helpers for ledger operations.

Adds correlation IDs and structured logging context to engine operations.
"""

import time
import uuid
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import AppException

# Configure structured logger
logger = logging.getLogger("ledger")


def configure_logging(level: str = None) -> None:
    """Apply a basic handler once; later calls only adjust the level."""
    level = (level or settings.log_level).upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    logger.setLevel(level)


@asynccontextmanager
async def track_operation(operation: str, **context: Any):
    """
    Time an engine operation and emit one structured log record for it.

    Yields the mutable log context so callers can attach results
    (e.g. applied line item count) before the record is written.
    """
    # 1. Generate Correlation ID
    correlation_id = context.pop("correlation_id", None) or str(uuid.uuid4())

    # 2. Start Timer
    start_time = time.time()

    log_data: Dict[str, Any] = {
        "correlation_id": correlation_id,
        "operation": operation,
        **context
    }

    try:
        yield log_data
    except AppException as exc:
        log_data["duration_ms"] = round((time.time() - start_time) * 1000, 2)
        log_data["error_code"] = exc.error_code
        logger.warning("Ledger Operation Rejected", extra=log_data)
        raise
    except Exception as exc:
        log_data["duration_ms"] = round((time.time() - start_time) * 1000, 2)
        log_data["error"] = f"{type(exc).__name__}: {exc}"
        logger.error("Ledger Operation Failed", extra=log_data)
        raise

    log_data["duration_ms"] = round((time.time() - start_time) * 1000, 2)
    logger.info("Ledger Operation", extra=log_data)
