"""Price, discount and stock-status rules shared by the catalog and checkout."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from settings import LOW_STOCK_THRESHOLD

IN_STOCK = "in-stock"
LIMITED = "limited"
OUT_OF_STOCK = "out-of-stock"
STOCK_STATUSES = (IN_STOCK, LIMITED, OUT_OF_STOCK)


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"Unsupported discount end date: {value!r}")
    # MongoDB hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_discount_valid(product: Mapping[str, Any], now: Optional[datetime] = None) -> bool:
    if not product.get("has_discount"):
        return False
    if (product.get("discount_percentage") or 0) <= 0:
        return False
    end = _as_utc(product.get("discount_end_date"))
    if end is None:
        return True
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return now < end


def get_current_price(product: Mapping[str, Any], now: Optional[datetime] = None) -> int:
    if is_discount_valid(product, now) and product.get("discounted_price") is not None:
        return int(product["discounted_price"])
    return int(product.get("price") or 0)


def compute_discounted_price(price: int, percentage: float) -> int:
    return int(round(price * (100 - percentage) / 100))


def derive_stock_status(stock: Optional[int], threshold: int = LOW_STOCK_THRESHOLD) -> Optional[str]:
    if stock is None:
        return None
    if stock <= 0:
        return OUT_OF_STOCK
    if stock <= threshold:
        return LIMITED
    return IN_STOCK


def compute_total(lines: Iterable[Dict[str, Any]], now: Optional[datetime] = None) -> int:
    """Sum of current unit price times quantity.

    Each line is a product mapping carrying a ``quantity`` key.
    """
    return sum(get_current_price(line, now) * int(line.get("quantity", 1)) for line in lines)
