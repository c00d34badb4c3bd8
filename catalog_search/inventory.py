"""Stock status derivation and display formatting."""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


STOCK_STATUS_LABELS: dict[StockStatus, str] = {
    StockStatus.IN_STOCK: "In stock",
    StockStatus.LOW_STOCK: "Low stock",
    StockStatus.OUT_OF_STOCK: "Out of stock",
}


def stock_status(available: int, low_water_mark: int) -> StockStatus:
    """Derive stock status from the available quantity.

    ``0`` is out of stock, ``1..low_water_mark`` is low stock, anything above
    is in stock.
    """
    if available < 0:
        raise ValueError("available quantity cannot be negative")
    if available == 0:
        return StockStatus.OUT_OF_STOCK
    if available <= low_water_mark:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def stock_label(status: StockStatus) -> str:
    return STOCK_STATUS_LABELS[status]


def format_price(amount: Decimal, symbol: str = "₮") -> str:
    """Format a price for display, e.g. ``₮12,500`` or ``₮1,299.50``."""
    quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if quantized == quantized.to_integral_value():
        return f"{symbol}{int(quantized):,}"
    return f"{symbol}{quantized:,.2f}"
