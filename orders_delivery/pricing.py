"""
Line item normalization and order totals.

Amounts are computed with ``Decimal`` and rounded to cents before being
persisted as JSON numbers.
"""
import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Union

from . import schemas

logger = logging.getLogger(__name__)

ORDER_CURRENCY = os.getenv("ORDER_CURRENCY", "MXN")

# When enabled, subtotals are built from the client's per-item totalPrice.
# Client-computed money amounts are not authoritative; keep this off.
TRUST_CLIENT_ITEM_TOTALS = os.getenv("TRUST_CLIENT_ITEM_TOTALS", "0").lower() in ("1", "true", "yes")

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_number(value: Decimal) -> Union[int, float]:
    """Convert a Decimal to the JSON number persisted in the store."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def line_total(item: schemas.LineItemIn, trust_client_totals: bool = False) -> Decimal:
    if trust_client_totals and item.totalPrice is not None:
        return to_money(item.totalPrice)
    return to_money(item.quantity * to_money(item.unitPrice))


def normalize_items(items: List[schemas.LineItemIn], trust_client_totals: bool = False) -> Dict[str, Dict[str, Any]]:
    """
    Map parsed items to the stored line item shape, keyed ``i1``, ``i2``, ...

    Args:
        items: Parsed line items in request order
        trust_client_totals: Keep the client's totalPrice instead of recomputing it

    Returns:
        Dict of item key to stored line item
    """
    normalized = {}
    for position, item in enumerate(items, start=1):
        normalized[f"i{position}"] = {
            "productId": item.productId,
            "quantity": to_number(item.quantity),
            "unitPrice": to_number(to_money(item.unitPrice)),
            "totalPrice": to_number(line_total(item, trust_client_totals)),
            "slug": item.slug,
            "image": item.image,
            "productName": item.productName,
            "comments": item.comments,
        }
    return normalized


def calculate_totals(
    items: List[schemas.LineItemIn],
    delivery_fee: Decimal = Decimal("0"),
    discount: Decimal = Decimal("0"),
    trust_client_totals: bool = False,
    currency: str = ORDER_CURRENCY,
) -> Dict[str, Any]:
    """
    Compute the order totals.

    ``total = max(0, subtotal + delivery_fee - discount)`` where the subtotal
    is the sum of line totals.

    Args:
        items: Parsed line items
        delivery_fee: Fee charged for delivery (default 0)
        discount: Amount discounted (default 0)
        trust_client_totals: Sum client-supplied totalPrice values
        currency: Currency code stored with the totals

    Returns:
        Dict with subtotal, deliveryFee, discount, total and currency
    """
    if trust_client_totals:
        logger.warning("Computing subtotal from client-supplied item totals")

    subtotal = sum((line_total(item, trust_client_totals) for item in items), Decimal("0"))
    delivery_fee = to_money(delivery_fee)
    discount = to_money(discount)
    total = max(Decimal("0"), subtotal + delivery_fee - discount)

    return {
        "subtotal": to_number(subtotal),
        "deliveryFee": to_number(delivery_fee),
        "discount": to_number(discount),
        "total": to_number(total),
        "currency": currency,
    }
