"""Event contracts shared by every service.

Every message on the bus is a JSON object with the common envelope
``{eventId, eventType, eventTime}`` followed by the payload of its family.
Each family is a msgspec tagged union keyed on ``eventType``; consumers decode
against the family they handle and never dispatch on raw strings.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Union

import msgspec
from msgspec import Struct, field

from common.errors import MalformedEventError, UnknownEventError
from common.kafka.events_config import *


def new_event_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Envelope(Struct, kw_only=True, rename="camel", tag_field="eventType"):
    event_id: str = field(default_factory=new_event_id)
    event_time: datetime = field(default_factory=utcnow)


# ------------------------------------------
# Cart
# ------------------------------------------
class CartEventItem(Struct, kw_only=True, rename="camel"):
    product_id: int
    quantity: int
    price: Decimal
    total: Decimal


class CartEvent(Envelope, kw_only=True):
    cart_id: int
    user_id: int
    total: Decimal
    items: list[CartEventItem] = []
    invoice_id: int | None = None


class CartCreated(CartEvent, tag=EVENT_CART_CREATED):
    pass


class CartUpdated(CartEvent, tag=EVENT_CART_UPDATED):
    pass


class CartCleared(CartEvent, tag=EVENT_CART_CLEARED):
    pass


class CartCheckout(CartEvent, tag=EVENT_CART_CHECKOUT):
    pass


# ------------------------------------------
# Invoice
# ------------------------------------------
class InvoiceItemDto(Struct, kw_only=True, rename="camel"):
    product_id: int
    quantity: int
    price: Decimal
    subtotal: Decimal | None = None


class InvoiceEvent(Envelope, kw_only=True):
    invoice_id: int
    user_id: int
    status: str
    total_amount: Decimal | None = None
    ship_address: str | None = None
    transaction_id: str | None = None
    created_at: datetime | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    items: list[InvoiceItemDto] = []


class InvoiceCreated(InvoiceEvent, tag=EVENT_INVOICE_CREATED):
    pass


class InvoiceUpdated(InvoiceEvent, tag=EVENT_INVOICE_UPDATED):
    pass


# ------------------------------------------
# Payment
# ------------------------------------------
class PaymentEvent(Envelope, kw_only=True):
    transaction_id: str
    invoice_id: int
    status: str
    provider_transaction_id: str | None = None
    user_id: int | None = None
    amount: Decimal | None = None
    payment_method: str = "VNPAY"
    bank_code: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None


class PaymentInitialized(PaymentEvent, tag=EVENT_PAYMENT_INITIALIZED):
    pass


class PaymentCompleted(PaymentEvent, tag=EVENT_PAYMENT_COMPLETED):
    pass


class PaymentFailed(PaymentEvent, tag=EVENT_PAYMENT_FAILED):
    pass


# ------------------------------------------
# Order
# ------------------------------------------
class OrderItem(Struct, kw_only=True, rename="camel"):
    # Optional so a single bad line can be skipped instead of failing the event
    product_id: int | None = None
    quantity: int | None = None
    price: Decimal | None = None


class OrderEvent(Envelope, kw_only=True):
    items: list[OrderItem]
    invoice_id: int | None = None
    user_id: int | None = None
    status: str | None = None


class OrderCreated(OrderEvent, tag=EVENT_ORDER_CREATED):
    pass


class OrderPlaced(OrderEvent, tag=EVENT_ORDER_PLACED):
    pass


class OrderCancelled(OrderEvent, tag=EVENT_ORDER_CANCELLED):
    pass


# ------------------------------------------
# Inventory
# ------------------------------------------
class InventoryChange(Struct, kw_only=True, rename="camel"):
    product_id: int
    previous_quantity: int
    new_quantity: int
    delta: int


class InventoryChanged(Envelope, kw_only=True, tag=EVENT_INVENTORY_CHANGED):
    product_changes: list[InventoryChange]
    invoice_id: int | None = None
    source_event_id: str | None = None


class LowStockAlert(Envelope, kw_only=True, tag=EVENT_LOW_STOCK_ALERT):
    product_id: int
    quantity: int
    reorder_level: int
    previous_quantity: int | None = None
    product_name: str | None = None


# ------------------------------------------
# User lifecycle (published by the auth service)
# ------------------------------------------
class UserEvent(Envelope, kw_only=True):
    user_id: int | None = None
    username: str | None = None
    email: str | None = None
    full_name: str | None = None
    reset_token: str | None = None
    token_expiry: datetime | None = None


class UserRegistered(UserEvent, tag=EVENT_USER_REGISTERED):
    pass


class PasswordResetRequested(UserEvent, tag=EVENT_PASSWORD_RESET_REQUESTED):
    pass


# ------------------------------------------
# Families
# ------------------------------------------
CART_EVENTS = {
    EVENT_CART_CREATED: CartCreated,
    EVENT_CART_UPDATED: CartUpdated,
    EVENT_CART_CLEARED: CartCleared,
    EVENT_CART_CHECKOUT: CartCheckout,
}

INVOICE_EVENTS = {
    EVENT_INVOICE_CREATED: InvoiceCreated,
    EVENT_INVOICE_UPDATED: InvoiceUpdated,
}

PAYMENT_EVENTS = {
    EVENT_PAYMENT_INITIALIZED: PaymentInitialized,
    EVENT_PAYMENT_COMPLETED: PaymentCompleted,
    EVENT_PAYMENT_FAILED: PaymentFailed,
}

ORDER_EVENTS = {
    EVENT_ORDER_CREATED: OrderCreated,
    EVENT_ORDER_PLACED: OrderPlaced,
    EVENT_ORDER_CANCELLED: OrderCancelled,
}

INVENTORY_EVENTS = {
    EVENT_INVENTORY_CHANGED: InventoryChanged,
    EVENT_LOW_STOCK_ALERT: LowStockAlert,
}

USER_EVENTS = {
    EVENT_USER_REGISTERED: UserRegistered,
    EVENT_PASSWORD_RESET_REQUESTED: PasswordResetRequested,
}

_decoders: dict[tuple[str, ...], msgspec.json.Decoder] = {}


def _decoder_for(family: dict[str, type]) -> msgspec.json.Decoder:
    key = tuple(sorted(family))
    decoder = _decoders.get(key)
    if decoder is None:
        decoder = msgspec.json.Decoder(Union[tuple(family.values())])
        _decoders[key] = decoder
    return decoder


def encode_event(event: Envelope) -> bytes:
    return msgspec.json.encode(event)


def decode_event(raw: bytes, family: dict[str, type]) -> Envelope:
    """Decode ``raw`` into one of the variants of ``family``.

    Raises ``MalformedEventError`` when the payload is not a JSON object, has no
    ``eventType`` or does not match the variant's shape, and
    ``UnknownEventError`` when ``eventType`` is not part of the family.
    """
    try:
        payload = msgspec.json.decode(raw)
    except msgspec.DecodeError as e:
        raise MalformedEventError(f"Undecodable event payload: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedEventError("Event payload is not an object")
    event_type = payload.get("eventType")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("Event has no eventType")
    if event_type not in family:
        raise UnknownEventError(event_type)
    try:
        return _decoder_for(family).decode(raw)
    except msgspec.ValidationError as e:
        raise MalformedEventError(f"Invalid {event_type} event: {e}") from e
