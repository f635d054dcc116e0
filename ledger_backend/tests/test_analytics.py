"""
Stage 6: Analytics Tests.

Dashboard rollups, redaction and ledger-derived reports.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from ledger_backend.app.core.config import settings
from ledger_backend.app.core.exceptions import EntityNotFoundError
from ledger_backend.app.core.timeutils import utcnow
from ledger_backend.app.models.enums import ViewerRole
from ledger_backend.app.models.ledger_enums import DocumentKind, OwningEntityType
from ledger_backend.app.services.analytics import RedactionPolicy, bucket_start, choose_granularity


def test_granularity_follows_window_span():
    start = datetime(2024, 3, 1, tzinfo=timezone.utc)

    assert choose_granularity(start, start + timedelta(hours=24)) == "hour"
    assert choose_granularity(start, start + timedelta(hours=48)) == "hour"
    assert choose_granularity(start, start + timedelta(hours=49)) == "day"
    assert choose_granularity(start, start + timedelta(days=14)) == "day"
    assert choose_granularity(start, start + timedelta(days=15)) == "week"


def test_week_buckets_start_on_monday():
    thursday = datetime(2024, 3, 7, 15, 45, tzinfo=timezone.utc)

    assert bucket_start(thursday, "week") == datetime(2024, 3, 4, tzinfo=timezone.utc)
    assert bucket_start(thursday, "day") == datetime(2024, 3, 7, tzinfo=timezone.utc)
    assert bucket_start(thursday, "hour") == datetime(2024, 3, 7, 15, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_dashboard_redacts_financials_for_staff(ledger, variant):
    now = utcnow()

    summary = await ledger.get_dashboard_summary(now - timedelta(days=1), now + timedelta(minutes=1), ViewerRole.STAFF)

    assert summary.total_stock_value == "***"
    assert summary.total_payables == "***"
    # Unit counts stay visible
    assert summary.total_stock_units == 10
    assert summary.active_variants == 1


@pytest.mark.asyncio
async def test_dashboard_shows_financials_to_admin(ledger, variant):
    now = utcnow()

    summary = await ledger.get_dashboard_summary(now - timedelta(days=1), now + timedelta(minutes=1), ViewerRole.ADMIN)

    assert summary.total_stock_value == Decimal("250.00")
    assert summary.viewer_role == "ADMIN"


@pytest.mark.asyncio
async def test_dashboard_movement_totals_and_alerts(ledger, variant, vendor):
    await ledger.register_stock_unit(sku="SKU-EMPTY", name="Empty", opening_stock=0)
    purchase = await ledger.create_document(
        DocumentKind.PURCHASE,
        vendor_id=vendor.id,
        line_items=[{"variant_id": variant.id, "quantity": 20, "unit_cost": "25.00"}],
    )
    await ledger.approve_document(purchase.id)
    await ledger.create_document(
        DocumentKind.DAMAGE, line_items=[{"variant_id": variant.id, "quantity": 1}]
    )

    now = utcnow()
    summary = await ledger.get_dashboard_summary(now - timedelta(hours=6), now + timedelta(minutes=1), "manager")

    totals = {row.kind: row for row in summary.movement_totals}
    assert totals["PURCHASE"].units_in == 20
    assert totals["PURCHASE"].value == Decimal("500.00")
    assert totals["PURCHASE"].previous_units_in == 0
    assert totals["OPENING_BALANCE"].units_in == 10
    assert summary.purchase_trend_percent == 0.0

    assert summary.out_of_stock_count == 1
    assert summary.low_stock_count == 0
    assert summary.pending_approvals == 1
    assert summary.total_payables == Decimal("500.00")
    assert [doc.kind for doc in summary.recent_documents] == [DocumentKind.DAMAGE, DocumentKind.PURCHASE]

    assert summary.granularity == "hour"
    assert sum(point.units_in for point in summary.time_series) == 30
    assert all(
        summary.time_series[i].bucket_start < summary.time_series[i + 1].bucket_start
        for i in range(len(summary.time_series) - 1)
    )


@pytest.mark.asyncio
async def test_low_stock_list(ledger):
    unit = await ledger.register_stock_unit(
        sku="SKU-LOW", name="Low", opening_stock=3, reorder_level=5, cost_price=Decimal("9.99")
    )
    now = utcnow()

    staff = await ledger.get_dashboard_summary(now - timedelta(days=30), now, ViewerRole.STAFF)

    assert staff.granularity == "week"
    assert staff.low_stock_count == 1
    item = staff.low_stock[0]
    assert item.variant_id == unit.id
    assert item.current_stock == 3
    assert item.cost_price == "***"


@pytest.mark.asyncio
async def test_dashboard_does_not_mutate(ledger, variant, fetch_entries):
    from ledger_backend.app.domain.ledger.bindings import STOCK_LEDGER

    before = [(e.id, e.running_balance) for e in await fetch_entries(STOCK_LEDGER, variant.id)]
    now = utcnow()
    await ledger.get_dashboard_summary(now - timedelta(days=3), now, ViewerRole.ADMIN)
    after = [(e.id, e.running_balance) for e in await fetch_entries(STOCK_LEDGER, variant.id)]

    assert before == after


@pytest.mark.asyncio
async def test_movement_report_opening_in_out_closing(ledger, variant):
    now = utcnow()
    purchase = await ledger.create_document(
        DocumentKind.PURCHASE,
        line_items=[{"variant_id": variant.id, "quantity": 20}],
        occurred_at=now - timedelta(days=3),
    )
    await ledger.approve_document(purchase.id)
    await ledger.adjust_balance(OwningEntityType.STOCK_UNIT, variant.id, -4)

    past = await ledger.get_movement_report(now - timedelta(days=5), now - timedelta(days=1))
    assert len(past) == 1
    assert (past[0].opening, past[0].units_in, past[0].units_out, past[0].closing) == (0, 20, 0, 20)

    recent = await ledger.get_movement_report(now - timedelta(days=1), utcnow(), variant_id=variant.id)
    row = recent[0]
    assert row.opening == 20
    assert row.units_in == 10
    assert row.units_out == 4
    assert row.closing == 26
    assert row.entry_count == 2


@pytest.mark.asyncio
async def test_movement_report_unknown_variant(ledger):
    now = utcnow()

    with pytest.raises(EntityNotFoundError):
        await ledger.get_movement_report(now - timedelta(days=1), now, variant_id=12345)


@pytest.mark.asyncio
async def test_account_statement(ledger, variant, vendor):
    purchase = await ledger.create_document(
        DocumentKind.PURCHASE,
        vendor_id=vendor.id,
        line_items=[{"variant_id": variant.id, "quantity": 5, "unit_cost": "100.00"}],
    )
    await ledger.approve_document(purchase.id)
    payment = await ledger.create_document(
        DocumentKind.PAYMENT, vendor_id=vendor.id, total_amount=Decimal("200")
    )
    await ledger.approve_document(payment.id)

    now = utcnow()
    statement = await ledger.get_account_statement(vendor.id, now - timedelta(days=1), now + timedelta(minutes=1))

    assert statement.opening_balance == Decimal("0.00")
    assert statement.total_debit == Decimal("500.00")
    assert statement.total_credit == Decimal("200.00")
    assert statement.closing_balance == Decimal("300.00")
    assert [e.running_balance for e in statement.entries] == [Decimal("500.00"), Decimal("300.00")]


@pytest.mark.asyncio
async def test_purchase_trend_against_previous_window(ledger, variant):
    """Previous window 10 units at 25.00, current window 15: +50%."""
    now = utcnow()
    start, end = now - timedelta(days=1), now + timedelta(minutes=1)

    earlier = await ledger.create_document(
        DocumentKind.PURCHASE,
        line_items=[{"variant_id": variant.id, "quantity": 10, "unit_cost": "25.00"}],
        occurred_at=now - timedelta(hours=36),
    )
    await ledger.approve_document(earlier.id)
    current = await ledger.create_document(
        DocumentKind.PURCHASE,
        line_items=[{"variant_id": variant.id, "quantity": 15, "unit_cost": "25.00"}],
    )
    await ledger.approve_document(current.id)

    summary = await ledger.get_dashboard_summary(start, end, ViewerRole.ADMIN)

    totals = {row.kind: row for row in summary.movement_totals}
    assert totals["PURCHASE"].value == Decimal("375.00")
    assert totals["PURCHASE"].previous_value == Decimal("250.00")
    assert totals["PURCHASE"].previous_units_in == 10
    assert summary.purchase_trend_percent == 50.0


def test_redaction_policy_uses_viewer_roles():
    assert RedactionPolicy(ViewerRole.ADMIN).privileged
    assert RedactionPolicy("manager").role is ViewerRole.MANAGER
    assert not RedactionPolicy(ViewerRole.VENDOR).privileged

    unknown = RedactionPolicy("auditor")
    assert unknown.role is None
    assert not unknown.privileged
    assert unknown.financial("total_stock_value", Decimal("1")) == settings.redaction_sentinel


@pytest.mark.asyncio
async def test_privileged_roles_come_from_settings(ledger, variant, monkeypatch):
    monkeypatch.setattr(settings, "privileged_roles", [ViewerRole.ADMIN])
    now = utcnow()

    manager = await ledger.get_dashboard_summary(now - timedelta(days=1), now, ViewerRole.MANAGER)
    admin = await ledger.get_dashboard_summary(now - timedelta(days=1), now, ViewerRole.ADMIN)

    assert manager.total_stock_value == "***"
    assert admin.total_stock_value == Decimal("250.00")
