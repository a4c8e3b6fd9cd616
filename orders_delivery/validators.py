"""
Validation utilities for the Orders Delivery service.

Parses raw request bodies into typed schemas and applies the business rules
that go beyond schema validation. The first violation found is raised as an
``OrderError`` so no normalization runs on malformed data.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from . import errors, schemas

MAX_ITEMS = 100
MAX_QUANTITY = Decimal("10000")
MAX_UNIT_PRICE = Decimal("1000000")

CREATED = "created"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"

# Transitions implemented by this service; every other one is owned elsewhere
VALID_TRANSITIONS = {
    CREATED: [CANCELLED],
    CONFIRMED: [CANCELLED],
    CANCELLED: [],
}


def _describe(error: Dict[str, Any]) -> str:
    field = ".".join(str(part) for part in error["loc"])
    return f"{field}: {error['msg']}" if field else error["msg"]


def _prefix(order_index: Optional[int]) -> str:
    return "" if order_index is None else f"Invalid order at index {order_index}: "


def _request_error(exc: ValidationError, order_index: Optional[int]) -> errors.OrderError:
    """Translate the first pydantic error of an order header into an OrderError."""
    error = exc.errors()[0]
    loc = error["loc"]
    field = str(loc[0]) if loc else "body"
    prefix = _prefix(order_index)

    if field in ("location", "bussineLocation"):
        return errors.InvalidLocation(f"{prefix}location requires finite numeric lat and lng ({_describe(error)})")
    if field == "items":
        if len(loc) > 1 and isinstance(loc[1], int):
            return errors.InvalidItem(loc[1], error["msg"], order_index=order_index)
        return errors.EmptyItems(f"{prefix}items must be a non-empty array")
    if field in ("userId", "localId", "bussineId", "zoneId", "bussineZoneId"):
        canonical = {"bussineId": "localId", "bussineZoneId": "zoneId"}.get(field, field)
        if error["type"] in ("missing", "string_too_short"):
            return errors.MissingField(canonical, f"{prefix}Missing {canonical}")
        return errors.MissingField(canonical, f"{prefix}Invalid {canonical}: {error['msg']}")
    return errors.MissingField(field, f"{prefix}Invalid field {_describe(error)}")


def parse_order_request(
    body: Dict[str, Any], order_index: Optional[int] = None
) -> Tuple[schemas.OrderRequest, List[schemas.LineItemIn]]:
    """
    Parse one order of an intake request.

    Checks run in this order: userId, merchant and zone identity, location,
    items present, then each item.

    Args:
        body: Raw order fields, including ``userId``
        order_index: Position of the order in a batch request, if any

    Returns:
        Tuple of (order header, parsed line items)

    Raises:
        MissingField, InvalidLocation, EmptyItems, InvalidItem
    """
    if not isinstance(body, dict):
        raise errors.MissingField("order", f"{_prefix(order_index)}order must be an object")
    try:
        request = schemas.OrderRequest.model_validate(body)
    except ValidationError as exc:
        raise _request_error(exc, order_index) from None

    if len(request.items) > MAX_ITEMS:
        raise errors.InvalidItem(MAX_ITEMS, f"order cannot contain more than {MAX_ITEMS} items", order_index)

    items = []
    for index, raw in enumerate(request.items):
        if not isinstance(raw, dict):
            raise errors.InvalidItem(index, "item must be an object", order_index=order_index)
        try:
            items.append(schemas.LineItemIn.model_validate(raw))
        except ValidationError as exc:
            raise errors.InvalidItem(index, _describe(exc.errors()[0]), order_index=order_index) from None
        validate_line_item(index, items[-1], order_index)

    return request, items


def validate_line_item(index: int, item: schemas.LineItemIn, order_index: Optional[int] = None) -> None:
    """
    Validate one parsed line item for business rules.

    Args:
        index: Position of the item in the order
        item: Parsed line item
        order_index: Position of the order in a batch request, if any

    Raises:
        InvalidItem: If the item breaks a limit
    """
    if item.quantity > MAX_QUANTITY:
        raise errors.InvalidItem(index, f"quantity exceeds maximum ({MAX_QUANTITY})", order_index)

    if item.unitPrice > MAX_UNIT_PRICE:
        raise errors.InvalidItem(index, "unitPrice exceeds maximum (1,000,000)", order_index)


def parse_cancel_request(body: Optional[Dict[str, Any]]) -> schemas.CancelOrderRequest:
    """Parse a cancellation body; a missing or malformed userId/orderId is a MissingField."""
    try:
        request = schemas.CancelOrderRequest.model_validate(body or {})
    except ValidationError as exc:
        field = str(exc.errors()[0]["loc"][0])
        raise errors.MissingField(field, f"Invalid {field}") from None
    if not request.userId or not request.orderId:
        raise errors.MissingField("userId" if not request.userId else "orderId", "Missing userId or orderId")
    return request


def validate_key(value: str, field: str) -> str:
    """
    Check that an identifier can be used as a store path segment.

    Raises:
        MissingField: If the value is empty or contains reserved characters
    """
    value = str(value or "")
    if not value:
        raise errors.MissingField(field)
    if len(value) > schemas.MAX_KEY_LENGTH or any(char in value for char in "/.#$[]"):
        raise errors.MissingField(field, f"Invalid {field}")
    return value


def validate_order_status_transition(old_status: str, new_status: str) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed.

    Args:
        old_status: Current order status
        new_status: New order status

    Returns:
        Tuple of (is_valid, error_message)
    """
    allowed = VALID_TRANSITIONS.get(old_status, [])
    if new_status not in allowed:
        if new_status == CANCELLED:
            return False, f"Order cannot be cancelled from status: {old_status}"
        return False, f"Invalid status transition: {old_status} -> {new_status}"

    return True, ""
