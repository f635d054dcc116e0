"""
Analytics Service.

Handles ledger aggregation for dashboards and reports.
Focused on READ-ONLY operations: nothing here writes the ledger or the
balance cache.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import EntityNotFoundError, RedactionPolicyViolation
from ledger_backend.app.core.timeutils import as_utc, utcnow
from ledger_backend.app.domain.ledger.bindings import VENDOR_LEDGER
from ledger_backend.app.models.enums import ViewerRole
from ledger_backend.app.models.ledger_enums import DocumentStatus, StockMovementType
from ledger_backend.app.models.product_variant import ProductVariant
from ledger_backend.app.models.source_document import SourceDocument
from ledger_backend.app.models.stock_movement import StockMovement
from ledger_backend.app.models.vendor import Vendor
from ledger_backend.app.models.vendor_ledger_entry import VendorLedgerEntry
from ledger_backend.app.schemas.analytics import (
    AccountStatement, DashboardSummary, LowStockItem, MovementKindTotal,
    MovementReportRow, RecentDocument, StatementEntry, TimeSeriesPoint
)

HOURLY_MAX_SPAN = timedelta(hours=48)
DAILY_MAX_SPAN = timedelta(days=14)

_BUCKET_STEP = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}

_CENT = Decimal("0.01")


def _money(value: Any) -> Decimal:
    # SQLite hands back floats for Numeric aggregates
    return Decimal(str(value or 0)).quantize(_CENT)


def choose_granularity(start: datetime, end: datetime) -> str:
    """<= 48h -> hour, <= 14 days -> day, otherwise week."""
    span = end - start
    if span <= HOURLY_MAX_SPAN:
        return "hour"
    if span <= DAILY_MAX_SPAN:
        return "day"
    return "week"


def bucket_start(value: datetime, granularity: str) -> datetime:
    """Truncate a timestamp to the start of its bucket (weeks start Monday)."""
    value = as_utc(value)
    if granularity == "hour":
        return value.replace(minute=0, second=0, microsecond=0)
    day = value.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == "day":
        return day
    return day - timedelta(days=day.weekday())


def bucket_label(start: datetime, granularity: str) -> str:
    if granularity == "hour":
        return start.strftime("%H:00")
    if granularity == "day":
        return start.strftime("%b %d")
    return f"Week {start.isocalendar()[1]}"


class RedactionPolicy:
    """
    Role-based visibility of financial fields.

    Unit counts are always visible; money is only shown to privileged roles.
    Unknown roles are treated as unprivileged.
    """

    def __init__(self, viewer_role: Any):
        raw = str(getattr(viewer_role, "value", viewer_role)).upper()
        try:
            self.role: Optional[ViewerRole] = ViewerRole(raw)
        except ValueError:
            self.role = None
        self.viewer_role = self.role.value if self.role is not None else raw
        self.privileged = self.role in settings.privileged_roles

    def require(self, field: str) -> None:
        if not self.privileged:
            raise RedactionPolicyViolation(field, self.viewer_role)

    def financial(self, field: str, value: Any) -> Any:
        """Return the value, or the sentinel if the viewer may not see it."""
        try:
            self.require(field)
        except RedactionPolicyViolation:
            return settings.redaction_sentinel
        return value


class AnalyticsService:

    @staticmethod
    async def _movement_totals(
        db: AsyncSession,
        start: datetime,
        end: datetime,
        include_end: bool = True
    ) -> Dict[str, Tuple[int, int, int, Decimal]]:
        """(units_in, units_out, entry_count, value at cost) per movement kind."""
        upper = StockMovement.occurred_at <= end if include_end else StockMovement.occurred_at < end
        stmt = (
            select(
                StockMovement.movement_type,
                func.coalesce(func.sum(StockMovement.quantity_in), 0),
                func.coalesce(func.sum(StockMovement.quantity_out), 0),
                func.count(StockMovement.id),
                func.coalesce(func.sum(
                    (StockMovement.quantity_in + StockMovement.quantity_out) * ProductVariant.cost_price
                ), 0),
            )
            .join(ProductVariant, ProductVariant.id == StockMovement.variant_id)
            .where(StockMovement.occurred_at >= start, upper)
            .group_by(StockMovement.movement_type)
        )
        rows = await db.execute(stmt)
        return {
            kind.value: (int(units_in), int(units_out), int(count), _money(value))
            for kind, units_in, units_out, count, value in rows
        }

    @staticmethod
    async def _time_series(
        db: AsyncSession,
        start: datetime,
        end: datetime,
        granularity: str
    ) -> List[TimeSeriesPoint]:
        step = _BUCKET_STEP[granularity]
        buckets: Dict[datetime, List[int]] = {}
        cursor = bucket_start(start, granularity)
        while cursor <= end:
            buckets[cursor] = [0, 0]
            cursor += step

        rows = await db.execute(
            select(StockMovement.occurred_at, StockMovement.quantity_in, StockMovement.quantity_out)
            .where(StockMovement.occurred_at >= start, StockMovement.occurred_at <= end)
        )
        for occurred_at, quantity_in, quantity_out in rows:
            bucket = buckets.setdefault(bucket_start(occurred_at, granularity), [0, 0])
            bucket[0] += quantity_in or 0
            bucket[1] += quantity_out or 0

        return [
            TimeSeriesPoint(
                bucket_start=key,
                label=bucket_label(key, granularity),
                units_in=units_in,
                units_out=units_out,
                net_units=units_in - units_out,
            )
            for key, (units_in, units_out) in sorted(buckets.items())
        ]

    @staticmethod
    async def get_dashboard_summary(
        db: AsyncSession,
        start: datetime,
        end: datetime,
        viewer_role: Any
    ) -> DashboardSummary:
        """
        Dashboard rollup for [start, end].

        Current inventory figures are not date filtered; movement totals,
        recent documents and the time series are. Movement totals are compared
        with the previous window of the same length.
        """
        start, end = as_utc(start), as_utc(end)
        if end < start:
            raise ValueError("end must not be earlier than start")

        policy = RedactionPolicy(viewer_role)
        granularity = choose_granularity(start, end)
        previous_start = start - (end - start)

        # 1. Current inventory (balance cache)
        stock_row = (await db.execute(
            select(
                func.coalesce(func.sum(ProductVariant.current_stock * ProductVariant.cost_price), 0),
                func.coalesce(func.sum(ProductVariant.current_stock), 0),
                func.count(ProductVariant.id),
            ).where(ProductVariant.current_stock > 0, ProductVariant.is_active == True)  # noqa: E712
        )).one()
        total_stock_value, total_stock_units, active_variants = stock_row

        total_damaged_units = (await db.execute(
            select(func.coalesce(func.sum(ProductVariant.damaged_stock), 0))
            .where(ProductVariant.is_active == True)  # noqa: E712
        )).scalar() or 0

        total_payables = (await db.execute(
            select(func.coalesce(func.sum(Vendor.balance), 0)).where(Vendor.is_active == True)  # noqa: E712
        )).scalar()

        # 2. Period-over-period movement totals
        current = await AnalyticsService._movement_totals(db, start, end)
        previous = await AnalyticsService._movement_totals(db, previous_start, start, include_end=False)
        empty = (0, 0, 0, Decimal("0.00"))
        movement_totals = []
        for kind in sorted(set(current) | set(previous)):
            cur = current.get(kind, empty)
            prev = previous.get(kind, empty)
            movement_totals.append(MovementKindTotal(
                kind=kind,
                units_in=cur[0],
                units_out=cur[1],
                entry_count=cur[2],
                value=policy.financial("movement_totals.value", cur[3]),
                previous_units_in=prev[0],
                previous_units_out=prev[1],
                previous_entry_count=prev[2],
                previous_value=policy.financial("movement_totals.previous_value", prev[3]),
            ))

        purchase_value = current.get(StockMovementType.PURCHASE.value, empty)[3]
        previous_purchase_value = previous.get(StockMovementType.PURCHASE.value, empty)[3]
        trend_percent = 0.0
        if previous_purchase_value > 0:
            trend_percent = round(
                float((purchase_value - previous_purchase_value) / previous_purchase_value * 100), 1
            )

        # 3. Stock alerts (current state)
        low_stock_filter = (
            ProductVariant.is_active == True,  # noqa: E712
            ProductVariant.current_stock > 0,
            ProductVariant.current_stock <= ProductVariant.reorder_level,
        )
        low_stock_count = (await db.execute(
            select(func.count(ProductVariant.id)).where(*low_stock_filter)
        )).scalar() or 0
        low_stock_rows = (await db.execute(
            select(ProductVariant)
            .where(*low_stock_filter)
            .order_by(ProductVariant.current_stock.asc(), ProductVariant.id.asc())
            .limit(settings.low_stock_list_limit)
        )).scalars().all()
        low_stock = [
            LowStockItem(
                variant_id=variant.id,
                sku=variant.sku,
                name=variant.name,
                current_stock=variant.current_stock,
                reorder_level=variant.reorder_level,
                cost_price=policy.financial("low_stock.cost_price", _money(variant.cost_price)),
                selling_price=_money(variant.selling_price),
            )
            for variant in low_stock_rows
        ]

        out_of_stock_count = (await db.execute(
            select(func.count(ProductVariant.id)).where(
                ProductVariant.is_active == True,  # noqa: E712
                ProductVariant.current_stock <= 0,
            )
        )).scalar() or 0

        pending_approvals = (await db.execute(
            select(func.count(SourceDocument.id)).where(SourceDocument.status == DocumentStatus.PENDING)
        )).scalar() or 0

        # 4. Recent documents in the window
        recent_rows = await db.execute(
            select(SourceDocument, Vendor.name)
            .outerjoin(Vendor, Vendor.id == SourceDocument.vendor_id)
            .where(SourceDocument.occurred_at >= start, SourceDocument.occurred_at <= end)
            .order_by(SourceDocument.occurred_at.desc(), SourceDocument.id.desc())
            .limit(settings.recent_documents_limit)
        )
        recent_documents = [
            RecentDocument(
                id=document.id,
                reference_no=document.reference_no,
                kind=document.kind,
                status=document.status,
                total_amount=policy.financial("recent_documents.total_amount", _money(document.total_amount)),
                occurred_at=as_utc(document.occurred_at),
                vendor_name=vendor_name,
            )
            for document, vendor_name in recent_rows
        ]

        # 5. Time series
        time_series = await AnalyticsService._time_series(db, start, end, granularity)

        return DashboardSummary(
            start=start,
            end=end,
            previous_start=previous_start,
            granularity=granularity,
            viewer_role=policy.viewer_role,
            total_stock_value=policy.financial("total_stock_value", _money(total_stock_value)),
            total_stock_units=int(total_stock_units),
            total_damaged_units=int(total_damaged_units),
            active_variants=int(active_variants),
            total_payables=policy.financial("total_payables", _money(total_payables)),
            movement_totals=movement_totals,
            purchase_trend_percent=trend_percent,
            low_stock_count=low_stock_count,
            low_stock=low_stock,
            out_of_stock_count=out_of_stock_count,
            pending_approvals=pending_approvals,
            recent_documents=recent_documents,
            time_series=time_series,
            generated_at=utcnow(),
        )

    @staticmethod
    async def get_movement_report(
        db: AsyncSession,
        start: datetime,
        end: datetime,
        variant_id: Optional[int] = None
    ) -> List[MovementReportRow]:
        """
        Per-variant opening / in / out / closing over [start, end], from the ledger.

        Opening is the ledger sum before the window; closing is
        opening + in - out.
        """
        start, end = as_utc(start), as_utc(end)

        variants_stmt = select(ProductVariant).order_by(ProductVariant.id)
        opening_stmt = (
            select(
                StockMovement.variant_id,
                func.coalesce(func.sum(StockMovement.quantity_in - StockMovement.quantity_out), 0),
            )
            .where(StockMovement.occurred_at < start)
            .group_by(StockMovement.variant_id)
        )
        window_stmt = (
            select(
                StockMovement.variant_id,
                func.coalesce(func.sum(StockMovement.quantity_in), 0),
                func.coalesce(func.sum(StockMovement.quantity_out), 0),
                func.count(StockMovement.id),
            )
            .where(StockMovement.occurred_at >= start, StockMovement.occurred_at <= end)
            .group_by(StockMovement.variant_id)
        )
        if variant_id is not None:
            variants_stmt = variants_stmt.where(ProductVariant.id == variant_id)
            opening_stmt = opening_stmt.where(StockMovement.variant_id == variant_id)
            window_stmt = window_stmt.where(StockMovement.variant_id == variant_id)

        variants = (await db.execute(variants_stmt)).scalars().all()
        if variant_id is not None and not variants:
            raise EntityNotFoundError("ProductVariant", variant_id)

        openings = {row[0]: int(row[1]) for row in await db.execute(opening_stmt)}
        window = {row[0]: (int(row[1]), int(row[2]), int(row[3])) for row in await db.execute(window_stmt)}

        report = []
        for variant in variants:
            opening = openings.get(variant.id, 0)
            units_in, units_out, count = window.get(variant.id, (0, 0, 0))
            report.append(MovementReportRow(
                variant_id=variant.id,
                sku=variant.sku,
                name=variant.name,
                opening=opening,
                units_in=units_in,
                units_out=units_out,
                closing=opening + units_in - units_out,
                entry_count=count,
            ))
        return report

    @staticmethod
    async def get_account_statement(
        db: AsyncSession,
        vendor_id: int,
        start: datetime,
        end: datetime
    ) -> AccountStatement:
        """Vendor statement: opening balance, entries in [start, end], closing balance."""
        start, end = as_utc(start), as_utc(end)

        vendor = await db.get(Vendor, vendor_id)
        if vendor is None:
            raise EntityNotFoundError("Vendor", vendor_id)

        before_rows = await db.execute(
            select(VendorLedgerEntry.debit, VendorLedgerEntry.credit).where(
                VendorLedgerEntry.vendor_id == vendor_id,
                VendorLedgerEntry.occurred_at < start,
            )
        )
        opening = sum(
            (VENDOR_LEDGER.coerce(debit) - VENDOR_LEDGER.coerce(credit) for debit, credit in before_rows),
            Decimal("0")
        )

        entries = (await db.execute(
            VENDOR_LEDGER.ordered_entries(vendor_id).where(
                VendorLedgerEntry.occurred_at >= start,
                VendorLedgerEntry.occurred_at <= end,
            )
        )).scalars().all()

        running = opening
        total_debit = total_credit = Decimal("0")
        lines = []
        for entry in entries:
            debit = VENDOR_LEDGER.coerce(entry.debit)
            credit = VENDOR_LEDGER.coerce(entry.credit)
            running += debit - credit
            total_debit += debit
            total_credit += credit
            lines.append(StatementEntry(
                id=entry.id,
                entry_type=entry.entry_type,
                debit=_money(debit),
                credit=_money(credit),
                running_balance=_money(running),
                reference_no=entry.reference_no,
                description=entry.description,
                occurred_at=as_utc(entry.occurred_at),
            ))

        return AccountStatement(
            vendor_id=vendor.id,
            vendor_name=vendor.name,
            start=start,
            end=end,
            opening_balance=_money(opening),
            total_debit=_money(total_debit),
            total_credit=_money(total_credit),
            closing_balance=_money(running),
            entries=lines,
        )
