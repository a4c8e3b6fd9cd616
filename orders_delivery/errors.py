"""
Order error taxonomy.

Raised by the order operations when a request cannot be honoured. The API
layer translates them into HTTP responses using ``status_code``.
"""
from typing import Optional


class OrderError(Exception):
    """Base class for caller-visible order failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingField(OrderError):
    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"Missing {field}")
        self.field = field


class InvalidLocation(OrderError):
    pass


class EmptyItems(OrderError):
    pass


class InvalidItem(OrderError):
    """A line item failed validation; ``index`` is its position in the request."""

    def __init__(self, index: int, reason: str, order_index: Optional[int] = None):
        where = f"items[{index}]" if order_index is None else f"order[{order_index}].items[{index}]"
        super().__init__(f"Invalid item at {where}: {reason}")
        self.index = index
        self.order_index = order_index
        self.reason = reason


class NotFound(OrderError):
    status_code = 404

    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class Forbidden(OrderError):
    status_code = 403

    def __init__(self):
        super().__init__("Forbidden")


class InvalidStateTransition(OrderError):
    def __init__(self, current_status: str, message: Optional[str] = None):
        super().__init__(message or f"Order cannot be cancelled from status: {current_status}")
        self.current_status = current_status


class ConcurrentModification(OrderError):
    status_code = 409

    def __init__(self):
        super().__init__("Order was modified concurrently, retry the request")


class InternalError(OrderError):
    status_code = 500

    def __init__(self):
        super().__init__("Internal error")
