"""
Orders Delivery Service API

This module implements a FastAPI-based microservice for taking delivery and
pickup orders and cancelling them. Orders, their status history and the
lookup indexes are persisted through an injected tree store.

Endpoints:
    POST /createOrderDelivery: Create one order, or several with ``orders: [...]``
    POST /cancelOrderDelivery: Cancel an order owned by the caller
    GET /orders/{order_id}: Get a single order (owner only)
    GET /orders/{order_id}/history: Get an order's status history (owner only)
    GET /users/{user_id}/orders: List a user's orders, newest first
    GET /healthz: Health check endpoint for orchestration systems

Attributes:
    app (FastAPI): The FastAPI application instance configured with the title "orders-delivery-service"
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import crud, errors, models, schemas, validators
from .database import SessionLocal, engine
from .store import OrderStore, SqlOrderStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

BATCH_KEYS = ("orders", "data", "payload")

order_store = SqlOrderStore(SessionLocal)


def get_store() -> OrderStore:
    """
    Dependency function that provides the order store.

    Usage:
        Use as a FastAPI dependency; tests override it with an in-memory store.
    """
    return order_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="orders-delivery-service", lifespan=lifespan)


@app.exception_handler(errors.OrderError)
async def order_error_handler(request: Request, exc: errors.OrderError):
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"ok": False, "error": "Request body must be a JSON object"},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": errors.InternalError().message},
    )


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint for the orders delivery service.

    Returns:
        dict: {"status": "healthy"} when the service is operational.
    """
    return {"status": "healthy"}


@app.post("/createOrderDelivery")
def create_order_delivery(
    body: Optional[Dict[str, Any]] = Body(None),
    store: OrderStore = Depends(get_store),
):
    """
    Create delivery/pickup orders for a user.

    The body is either a single order ``{userId, localId, zoneId, location,
    items, ...}`` or a batch ``{userId, orders: [...]}``. A batch is committed
    as one atomic write.

    Returns:
        {"ok": true, "orderId": ...} or {"ok": true, "orderIds": [...]} for a batch

    Raises:
        OrderError: 400 on validation failure, 500 if the store fails
    """
    body = body or {}
    batch_key = next((key for key in BATCH_KEYS if key in body), None)

    if batch_key is None:
        order = {key: value for key, value in body.items() if key != "userId"}
        order_id = crud.create_order(store, body.get("userId"), order)
        return schemas.OrderCreated(orderId=order_id)

    orders = body[batch_key]
    if not body.get("userId"):
        raise errors.MissingField("userId", "Missing userId")
    if not isinstance(orders, list) or not orders:
        raise errors.EmptyItems("Missing orders: must be a non-empty array")
    order_ids = crud.create_orders(store, body.get("userId"), orders, batch=True)
    return schemas.OrdersCreated(orderIds=order_ids)


@app.post("/cancelOrderDelivery", response_model=schemas.OkResponse)
def cancel_order_delivery(
    body: Optional[Dict[str, Any]] = Body(None),
    store: OrderStore = Depends(get_store),
):
    """
    Cancel an order owned by the caller.

    Returns:
        {"ok": true}

    Raises:
        OrderError: 400 missing fields or invalid transition, 403 not the owner,
            404 order not found, 409 concurrent status change, 500 store failure
    """
    request = validators.parse_cancel_request(body)
    crud.cancel_order(store, request.userId, request.orderId, request.reason)
    return schemas.OkResponse()


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: str,
    userId: str = Query(""),
    store: OrderStore = Depends(get_store),
):
    """
    Get a single order by ID (owner only).

    Raises:
        OrderError: 403 if not the owner, 404 if order not found
    """
    return crud.get_order(store, userId, order_id)


@app.get("/orders/{order_id}/history", response_model=List[schemas.HistoryEntry])
def get_order_history(
    order_id: str,
    userId: str = Query(""),
    store: OrderStore = Depends(get_store),
):
    """
    Get the status history of an order (owner only), oldest first.

    Raises:
        OrderError: 403 if not the owner, 404 if order not found
    """
    return crud.get_order_history(store, userId, order_id)


@app.get("/users/{user_id}/orders", response_model=List[schemas.Order])
def list_user_orders(
    user_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    store: OrderStore = Depends(get_store),
):
    """
    List a user's orders, newest first, optionally filtered by status.
    """
    return crud.list_user_orders(store, user_id, status=status_filter)
