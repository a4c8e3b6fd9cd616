"""
Order operations for the Orders Delivery service.

Intake and cancellation each build the full set of writes for one request
(order document, history entry, lookup indexes) and commit it with a single
``atomic_write`` so the store never exposes a partially applied order.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from . import errors, pricing, schemas, validators
from .store import DELETE, OrderStore, PreconditionFailed, StoreError

# Set up logging
logger = logging.getLogger(__name__)

ORDERS = "ordersDelivery"
ORDERS_BY_USER = "ordersDeliveryByUser"
ORDERS_BY_LOCAL = "ordersDeliveryByLocal"
ORDERS_BY_STATUS = "ordersDeliveryByStatus"

USER_ACTOR = "user"


def order_path(order_id: str) -> str:
    return f"{ORDERS}/{order_id}"


def history_path(order_id: str) -> str:
    return f"{ORDERS}/{order_id}/history"


def index_path(index: str, key: str, order_id: str) -> str:
    return f"{index}/{key}/{order_id}"


def _commit(store: OrderStore, writes: List[Tuple[str, Any]], expect: Optional[Dict[str, Any]] = None) -> None:
    try:
        store.atomic_write(writes, expect=expect)
    except PreconditionFailed as e:
        logger.warning(f"Concurrent modification detected: {e}")
        raise errors.ConcurrentModification() from e
    except StoreError as e:
        logger.exception(f"Store commit failed: {e}")
        raise errors.InternalError() from e


def _read(store: OrderStore, path: str) -> Optional[Any]:
    try:
        return store.read(path)
    except StoreError as e:
        logger.exception(f"Store read failed: {e}")
        raise errors.InternalError() from e


def build_order_document(
    store: OrderStore,
    order_id: str,
    request: schemas.OrderRequest,
    items: List[schemas.LineItemIn],
    trust_client_totals: bool = False,
) -> Dict[str, Any]:
    """
    Build the stored Order for a parsed intake request.

    Both timestamps are the store's commit-time marker.
    """
    ts = store.server_timestamp()
    location = {
        "zoneId": request.zoneId,
        "zoneName": request.zoneName,
        "lat": request.location.lat,
        "lng": request.location.lng,
        "addressText": request.location.addressText,
        "references": request.location.references,
    }
    return {
        "id": order_id,
        "type": "pickup" if request.deliveryMethod == "pickup" else "delivery",
        "userId": request.userId,
        "localId": request.localId,
        "deliveryManId": None,
        "status": validators.CREATED,
        "createdAt": ts,
        "updatedAt": ts,
        "payment": {"method": request.paymentMethod or "cash", "status": "pending"},
        "totals": pricing.calculate_totals(
            items,
            delivery_fee=request.deliveryFee,
            discount=request.discount,
            trust_client_totals=trust_client_totals,
        ),
        "items": pricing.normalize_items(items, trust_client_totals),
        "location": location,
        "customerSnapshot": {"name": request.customer.name, "phone": request.customer.phone},
        "localSnapshot": {"name": request.localName},
    }


def _intake_writes(store: OrderStore, order_id: str, order: Dict[str, Any]) -> List[Tuple[str, Any]]:
    history_id = store.allocate_id(history_path(order_id))
    return [
        (order_path(order_id), order),
        (f"{history_path(order_id)}/{history_id}", {
            "status": validators.CREATED,
            "at": store.server_timestamp(),
            "by": USER_ACTOR,
        }),
        (index_path(ORDERS_BY_USER, order["userId"], order_id), True),
        (index_path(ORDERS_BY_LOCAL, order["localId"], order_id), True),
        (index_path(ORDERS_BY_STATUS, validators.CREATED, order_id), True),
    ]


def create_orders(
    store: OrderStore,
    user_id: Any,
    orders: List[Dict[str, Any]],
    batch: bool = False,
    trust_client_totals: Optional[bool] = None,
) -> List[str]:
    """
    Validate and persist one or more orders for a user in a single commit.

    Every order is validated before anything is written; the first violation
    aborts the whole request.

    Args:
        store: Order store
        user_id: Owning customer
        orders: Raw order bodies (without userId)
        batch: Whether the request used the multi-order form, which changes
            how errors name the offending order
        trust_client_totals: Override for TRUST_CLIENT_ITEM_TOTALS

    Returns:
        List of created order IDs, in request order

    Raises:
        MissingField, InvalidLocation, EmptyItems, InvalidItem: Invalid request
        InternalError: If the store fails
    """
    user_id = "" if user_id is None else str(user_id)
    if not user_id:
        raise errors.MissingField("userId", "Missing userId")
    if not orders:
        raise errors.EmptyItems("Missing orders: must be a non-empty array")
    if trust_client_totals is None:
        trust_client_totals = pricing.TRUST_CLIENT_ITEM_TOTALS

    parsed = []
    for index, body in enumerate(orders):
        if isinstance(body, dict):
            body = {**body, "userId": user_id}
        parsed.append(validators.parse_order_request(body, index if batch else None))

    order_ids = []
    writes = []
    for request, items in parsed:
        order_id = store.allocate_id(ORDERS)
        order = build_order_document(store, order_id, request, items, trust_client_totals)
        writes.extend(_intake_writes(store, order_id, order))
        order_ids.append(order_id)

    _commit(store, writes)

    logger.info(f"Orders created for user '{user_id}': count={len(order_ids)} ids={order_ids}")
    return order_ids


def create_order(store: OrderStore, user_id: Any, order: Dict[str, Any]) -> str:
    """Validate and persist a single order, returning its ID."""
    return create_orders(store, user_id, [order])[0]


def get_order_document(store: OrderStore, order_id: str) -> Optional[Dict[str, Any]]:
    """
    Retrieve the stored order tree, including its history.

    Returns:
        Order document or None if not found
    """
    document = _read(store, order_path(order_id))
    return document if isinstance(document, dict) else None


def _load_owned_order(store: OrderStore, user_id: Any, order_id: Any) -> Dict[str, Any]:
    user_id = validators.validate_key(user_id, "userId")
    order_id = validators.validate_key(order_id, "orderId")

    document = get_order_document(store, order_id)
    if document is None:
        raise errors.NotFound()
    if str(document.get("userId")) != str(user_id):
        raise errors.Forbidden()
    return document


def cancel_order(store: OrderStore, user_id: Any, order_id: Any, reason: Any = None) -> None:
    """
    Cancel an order owned by ``user_id``.

    Only ``created`` and ``confirmed`` orders can be cancelled. The status
    change, history append and status index move are committed together,
    guarded by a compare-and-swap on the status that was read.

    Args:
        store: Order store
        user_id: Caller, must own the order
        order_id: Order to cancel
        reason: Free-text cancellation reason (optional)

    Raises:
        MissingField: If userId or orderId is missing
        NotFound: If the order does not exist
        Forbidden: If the caller does not own the order
        InvalidStateTransition: If the order cannot be cancelled from its status
        ConcurrentModification: If the status changed before the commit
        InternalError: If the store fails
    """
    if not user_id or not order_id:
        raise errors.MissingField("userId" if not user_id else "orderId", "Missing userId or orderId")

    document = _load_owned_order(store, user_id, order_id)
    order_id = str(order_id)
    stored_status = document.get("status")
    current_status = str(stored_status or validators.CREATED)

    is_valid, message = validators.validate_order_status_transition(current_status, validators.CANCELLED)
    if not is_valid:
        raise errors.InvalidStateTransition(current_status, message)

    reason = "" if reason is None else str(reason)
    ts = store.server_timestamp()
    history_id = store.allocate_id(history_path(order_id))
    path = order_path(order_id)

    writes = [
        (f"{path}/status", validators.CANCELLED),
        (f"{path}/updatedAt", ts),
        (f"{path}/cancelledAt", ts),
        (f"{path}/cancelReason", reason),
        (f"{history_path(order_id)}/{history_id}", {
            "status": validators.CANCELLED,
            "at": ts,
            "by": USER_ACTOR,
            "reason": reason,
        }),
        (index_path(ORDERS_BY_STATUS, current_status, order_id), DELETE),
        (index_path(ORDERS_BY_STATUS, validators.CANCELLED, order_id), True),
    ]
    _commit(store, writes, expect={f"{path}/status": stored_status})

    logger.info(f"Order '{order_id}' cancelled by user '{user_id}' (was '{current_status}')")


def get_order(store: OrderStore, user_id: Any, order_id: Any) -> schemas.Order:
    """
    Get a single order owned by ``user_id``.

    Raises:
        NotFound: If the order does not exist
        Forbidden: If the caller does not own the order
    """
    return schemas.Order.from_document(_load_owned_order(store, user_id, order_id))


def get_order_history(store: OrderStore, user_id: Any, order_id: Any) -> List[schemas.HistoryEntry]:
    """
    Get the status history of an order owned by ``user_id``, oldest first.

    Raises:
        NotFound: If the order does not exist
        Forbidden: If the caller does not own the order
    """
    document = _load_owned_order(store, user_id, order_id)
    history = document.get("history") or {}
    entries = [schemas.HistoryEntry(id=key, **entry) for key, entry in history.items()]
    return sorted(entries, key=lambda entry: (entry.at, entry.id))


def list_order_ids(store: OrderStore, index: str, key: Any) -> List[str]:
    """Return the order IDs registered under ``key`` in a lookup index."""
    key = validators.validate_key(key, "key")
    bucket = _read(store, f"{index}/{key}")
    if not isinstance(bucket, dict):
        return []
    return [order_id for order_id, present in bucket.items() if present]


def list_user_orders(store: OrderStore, user_id: Any, status: Optional[str] = None) -> List[schemas.Order]:
    """
    List a user's orders, newest first.

    Args:
        store: Order store
        user_id: Owning customer
        status: Only return orders in this status (optional)

    Returns:
        List of orders
    """
    user_id = validators.validate_key(user_id, "userId")
    orders = []
    for order_id in list_order_ids(store, ORDERS_BY_USER, user_id):
        document = get_order_document(store, order_id)
        if document is None:
            continue
        order = schemas.Order.from_document(document)
        if status and order.status != status:
            continue
        orders.append(order)
    return sorted(orders, key=lambda order: (order.createdAt, order.id), reverse=True)
