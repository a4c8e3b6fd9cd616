"""
Pydantic schemas for request/response validation in the Orders Delivery service.

Request schemas accept both the current field names and the legacy names
sent by the mobile client (``bussineId``, ``productID``, ``infoProduct`` ...).
Response schemas rebuild typed orders from the stored tree documents.
"""
import json
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AliasChoices, AliasPath, BaseModel, BeforeValidator, ConfigDict, Field

# Identifiers become store path segments
KEY_PATTERN = r"^[^/.#$\[\]]+$"
MAX_KEY_LENGTH = 128


def _none_to_empty(value: Any) -> Any:
    return "" if value is None else value


Text = Annotated[str, BeforeValidator(_none_to_empty)]


def _any_to_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value if isinstance(value, str) else str(value)


# Free text that never fails validation
FreeText = Annotated[str, BeforeValidator(_any_to_text)]


class LenientModel(BaseModel):
    """Base for request bodies: numbers are accepted where strings are expected."""
    model_config = ConfigDict(coerce_numbers_to_str=True)


class LocationIn(LenientModel):
    """Geolocation of the order; ``long`` is accepted for ``lng``."""
    lat: float = Field(..., allow_inf_nan=False)
    lng: float = Field(..., allow_inf_nan=False, validation_alias=AliasChoices("lng", "long"))
    addressText: Optional[str] = None
    references: Optional[str] = None


class CustomerIn(LenientModel):
    name: Text = ""
    phone: Text = ""


class OrderRequest(LenientModel):
    """
    Header of an order intake request.

    Fields are declared in the order they are checked, so the first
    validation error reported is the first violation.
    """
    userId: Text = Field(..., min_length=1, max_length=MAX_KEY_LENGTH, pattern=KEY_PATTERN)
    localId: Text = Field(
        ..., min_length=1, max_length=MAX_KEY_LENGTH, pattern=KEY_PATTERN,
        validation_alias=AliasChoices("localId", "bussineId"),
    )
    zoneId: Text = Field(
        ..., min_length=1, max_length=MAX_KEY_LENGTH, pattern=KEY_PATTERN,
        validation_alias=AliasChoices("zoneId", "bussineZoneId"),
    )
    location: LocationIn = Field(..., validation_alias=AliasChoices("location", "bussineLocation"))
    items: List[Any] = Field(..., min_length=1)
    localName: Text = Field("", validation_alias=AliasChoices("localName", "bussineName"))
    zoneName: Text = Field("", validation_alias=AliasChoices("zoneName", "bussineZoneName"))
    deliveryMethod: Text = "pickup"
    paymentMethod: Text = Field(
        "cash", validation_alias=AliasChoices("paymentMethod", AliasPath("payment", "method"))
    )
    deliveryFee: Decimal = Field(Decimal("0"), ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    customer: CustomerIn = Field(default_factory=CustomerIn)


class LineItemIn(LenientModel):
    """Schema for one raw line item, before normalization."""
    productId: Text = Field(..., min_length=1, validation_alias=AliasChoices("productId", "productID"))
    quantity: Decimal = Field(..., gt=0)
    unitPrice: Decimal = Field(
        Decimal("0"), ge=0,
        validation_alias=AliasChoices(
            "unitPrice",
            AliasPath("infoProduct", "precio"),
            AliasPath("infoProduct", "acf", "price"),
        ),
    )
    totalPrice: Optional[Decimal] = Field(None, ge=0, validation_alias=AliasChoices("totalPrice", "total"))
    slug: Text = Field("", validation_alias=AliasChoices("slug", AliasPath("infoProduct", "slug")))
    image: Text = Field("", validation_alias=AliasChoices("image", AliasPath("infoProduct", "imagen")))
    productName: Text = Field("", validation_alias=AliasChoices("productName", AliasPath("infoProduct", "nombre")))
    comments: Text = ""


class CancelOrderRequest(LenientModel):
    """Schema for a cancellation request."""
    userId: Text = ""
    orderId: Text = ""
    reason: FreeText = ""


class LineItem(BaseModel):
    productId: str
    quantity: float
    unitPrice: float
    totalPrice: float
    slug: str = ""
    image: str = ""
    productName: str = ""
    comments: str = ""


class Totals(BaseModel):
    subtotal: float
    deliveryFee: float
    discount: float
    total: float
    currency: str


class Payment(BaseModel):
    method: str
    status: str


class Location(BaseModel):
    zoneId: str
    zoneName: str = ""
    lat: float
    lng: float
    addressText: Optional[str] = None
    references: Optional[str] = None


class HistoryEntry(BaseModel):
    """
    Schema for one status transition of an order.

    Attributes:
        id (str): History key, sorts in creation order
        status (str): Status entered
        at (int): Commit time in epoch milliseconds
        by (str): Actor, currently always "user"
        reason (str): Cancellation reason (optional)
    """
    id: str
    status: str
    at: int
    by: str
    reason: Optional[str] = None


class Order(BaseModel):
    """
    Schema for order responses.

    Attributes:
        id (str): Order identifier assigned by the store
        type (str): "pickup" or "delivery"
        userId (str): Owning customer
        localId (str): Merchant
        status (str): Current status
        createdAt (int): Creation time in epoch milliseconds
        updatedAt (int): Last mutation time in epoch milliseconds
        totals (Totals): Server-computed money amounts
        items (List[LineItem]): Line items in request order
    """
    id: str
    type: str
    userId: str
    localId: str
    deliveryManId: Optional[str] = None
    status: str
    createdAt: int
    updatedAt: int
    payment: Payment
    totals: Totals
    items: List[LineItem]
    location: Location
    customerSnapshot: Dict[str, str] = Field(default_factory=dict)
    localSnapshot: Dict[str, str] = Field(default_factory=dict)
    cancelReason: Optional[str] = None
    cancelledAt: Optional[int] = None

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Order":
        data = {key: value for key, value in document.items() if key != "history"}
        data.setdefault("status", "created")
        items = data.get("items") or {}
        data["items"] = [items[key] for key in sorted(items, key=_item_position)]
        return cls.model_validate(data)


def _item_position(key: str) -> int:
    digits = key.lstrip("i")
    return int(digits) if digits.isdigit() else 0


class OrderCreated(BaseModel):
    ok: bool = True
    orderId: str


class OrdersCreated(BaseModel):
    ok: bool = True
    orderIds: List[str]


class OkResponse(BaseModel):
    ok: bool = True
