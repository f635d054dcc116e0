"""
Database seeding script for development data.

Creates a few product variants and vendors (with opening balances) and one
approved purchase, all through the ledger engine so every balance is backed
by ledger entries.
Run this script after the database is set up but before first use.
"""

import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ledger_backend.app.db.session import AsyncSessionLocal, create_schema
from ledger_backend.app.models.ledger_enums import DocumentKind
from ledger_backend.app.models.product_variant import ProductVariant
from ledger_backend.app.services.ledger_engine import LedgerEngine
from sqlalchemy import select

CATALOG = [
    # sku, name, opening stock, cost, price
    ("TSHIRT-BLK-M", "T-Shirt Black / M", 40, Decimal("250.00"), Decimal("599.00")),
    ("TSHIRT-BLK-L", "T-Shirt Black / L", 25, Decimal("250.00"), Decimal("599.00")),
    ("HOODIE-GRY-M", "Hoodie Grey / M", 8, Decimal("900.00"), Decimal("1899.00")),
    ("CAP-RED", "Cap Red", 0, Decimal("120.00"), Decimal("349.00")),
]

VENDORS = [
    ("Everest Textiles", Decimal("0")),
    ("Himal Apparel", Decimal("15000.00")),
]


async def seed_catalog():
    """
    Seed development catalog data.

    Creates:
    - 4 product variants (one out of stock, one below reorder level)
    - 2 vendors
    - 1 approved purchase from the first vendor
    """
    await create_schema()
    engine = LedgerEngine()

    print("🌱 Starting catalog seeding...")

    async with AsyncSessionLocal() as db:
        result = await db.execute(
            select(ProductVariant).where(ProductVariant.sku == CATALOG[0][0])
        )
        if result.scalar_one_or_none():
            print("ℹ️  Catalog already seeded, skipping")
            return

    variants = []
    for sku, name, stock, cost, price in CATALOG:
        variant = await engine.register_stock_unit(
            sku=sku, name=name, opening_stock=stock, cost_price=cost, selling_price=price
        )
        variants.append(variant)
        print(f"✅ Created variant {sku} (stock: {stock})")

    vendors = []
    for name, opening in VENDORS:
        vendor = await engine.register_account(name=name, opening_balance=opening)
        vendors.append(vendor)
        print(f"✅ Created vendor {name} (opening balance: {opening})")

    purchase = await engine.create_document(
        DocumentKind.PURCHASE,
        vendor_id=vendors[0].id,
        line_items=[
            {"variant_id": variants[0].id, "quantity": 20, "unit_cost": variants[0].cost_price},
            {"variant_id": variants[3].id, "quantity": 12, "unit_cost": variants[3].cost_price},
        ],
        notes="Seed purchase",
    )
    await engine.approve_document(purchase.id)
    print(f"✅ Approved purchase {purchase.reference_no} ({purchase.total_amount})")

    print("\n🎉 Catalog seeding completed successfully!")


if __name__ == "__main__":
    asyncio.run(seed_catalog())
