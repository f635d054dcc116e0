"""
Ledger bindings.

The engine is written once and instantiated twice: stock units against the
stock_movements ledger and vendor accounts against the vendor ledger. A
binding names the columns that play each role for one instantiation.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from sqlalchemy import select

from ledger_backend.app.core.exceptions import InvalidAmountError
from ledger_backend.app.models.ledger_enums import OwningEntityType
from ledger_backend.app.models.product_variant import ProductVariant
from ledger_backend.app.models.stock_movement import StockMovement
from ledger_backend.app.models.vendor import Vendor
from ledger_backend.app.models.vendor_ledger_entry import VendorLedgerEntry


@dataclass(frozen=True)
class LedgerBinding:
    """Column roles for one balance/ledger pair."""
    entity_type: OwningEntityType
    entity_label: str
    entity_model: Any
    balance_attr: str
    entry_model: Any
    entry_fk: str
    entry_kind_attr: str
    increase_attr: str
    decrease_attr: str
    floor: Optional[Any]
    # Largest magnitude the balance and magnitude columns can store
    limit: Optional[Any]
    zero: Any

    def coerce(self, value: Any) -> Any:
        """
        Normalize a magnitude to the balance type (int units or Decimal money).

        Raises:
            InvalidAmountError: Value is not a finite number, or is fractional
                for a unit-counted ledger
        """
        if value is None:
            return self.zero
        if isinstance(value, int) and not isinstance(value, bool):
            return value if not isinstance(self.zero, Decimal) else Decimal(value)
        if isinstance(value, Decimal):
            amount = value
        else:
            try:
                amount = Decimal(str(value))
            except InvalidOperation:
                raise InvalidAmountError(value, self.entity_label)
        if not amount.is_finite():
            raise InvalidAmountError(value, self.entity_label)
        if isinstance(self.zero, Decimal):
            return amount
        if amount != amount.to_integral_value():
            raise InvalidAmountError(value, self.entity_label)
        return int(amount)

    def saturate(self, value: Any) -> Any:
        """Pull a value back inside what the columns can store."""
        if self.limit is None:
            return value
        return max(-self.limit, min(self.limit, value))

    def clamp(self, value: Any) -> Any:
        """Apply the business floor, then the storage limit."""
        if self.floor is not None:
            value = max(self.floor, value)
        return self.saturate(value)

    def split(self, delta: Any) -> Tuple[Any, Any]:
        """Split a signed delta into (increase, decrease), both non-negative."""
        delta = self.coerce(delta)
        if delta >= 0:
            return delta, self.zero
        return self.zero, -delta

    def entry_fk_column(self):
        return getattr(self.entry_model, self.entry_fk)

    def entry_kind_column(self):
        return getattr(self.entry_model, self.entry_kind_attr)

    def net_change(self, entry: Any) -> Any:
        return (
            self.coerce(getattr(entry, self.increase_attr))
            - self.coerce(getattr(entry, self.decrease_attr))
        )

    def ordered_entries(self, entity_id: Any):
        """Entries for one entity in ledger order: event time, then insertion."""
        model = self.entry_model
        return (
            select(model)
            .where(self.entry_fk_column() == entity_id)
            .order_by(model.occurred_at.asc(), model.created_at.asc(), model.id.asc())
        )


# 32-bit Integer columns
STOCK_LIMIT = 2 ** 31 - 1
# Numeric(14, 2) columns
MONEY_LIMIT = Decimal("999999999999.99")

STOCK_LEDGER = LedgerBinding(
    entity_type=OwningEntityType.STOCK_UNIT,
    entity_label="ProductVariant",
    entity_model=ProductVariant,
    balance_attr="current_stock",
    entry_model=StockMovement,
    entry_fk="variant_id",
    entry_kind_attr="movement_type",
    increase_attr="quantity_in",
    decrease_attr="quantity_out",
    floor=0,
    limit=STOCK_LIMIT,
    zero=0,
)

VENDOR_LEDGER = LedgerBinding(
    entity_type=OwningEntityType.ACCOUNT,
    entity_label="Vendor",
    entity_model=Vendor,
    balance_attr="balance",
    entry_model=VendorLedgerEntry,
    entry_fk="vendor_id",
    entry_kind_attr="entry_type",
    increase_attr="debit",
    decrease_attr="credit",
    floor=None,
    limit=MONEY_LIMIT,
    zero=Decimal("0"),
)


def binding_for(entity_type: OwningEntityType) -> LedgerBinding:
    if entity_type == OwningEntityType.STOCK_UNIT:
        return STOCK_LEDGER
    return VENDOR_LEDGER
