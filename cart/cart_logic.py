import logging
import uuid
from datetime import datetime
from decimal import Decimal

from msgspec import msgpack, Struct, field

from common.auth import Principal
from common.config import cas_retry_policy
from common.db.util import Write, compare_and_swap, retry_db_call
from common.errors import (ConflictError, EmptyCartError, ForbiddenError, InsufficientStockError, NotFoundError,
                           ServiceError, ValidationError)
from common.events import (CartCheckout, CartCleared, CartCreated, CartEventItem, CartUpdated, OrderItem,
                           OrderPlaced, utcnow)
from common.http.client import ServiceClient, unwrap
from common.kafka.kafkaProducer import KafkaProducerSingleton
from common.kafka.topics_config import CART_TOPICS, ORDER_TOPICS
from common.money import line_total, money_sum, to_money, unit_price_of
from common.retry import RetryPolicy

CART_SEQ_KEY = "cart:seq"
CART_LINE_SEQ_KEY = "cart:line:seq"


def cart_key(cart_id: int) -> str:
    return f"cart:{cart_id}"


def user_cart_key(user_id: int) -> str:
    return f"cart:user:{user_id}"


def checkout_event_id(invoice_id: int) -> str:
    return f"checkout-{invoice_id}"


class CartLineValue(Struct, kw_only=True, rename="camel"):
    line_id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    total: Decimal


class CartValue(Struct, kw_only=True, rename="camel"):
    cart_id: int
    user_id: int
    total: Decimal = Decimal("0.00")
    lines: list[CartLineValue] = []
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def find_line(self, product_id: int) -> CartLineValue | None:
        return next((l for l in self.lines if l.product_id == product_id), None)

    def recompute_total(self):
        self.total = money_sum(l.total for l in self.lines)
        self.updated_at = utcnow()


class CheckoutResult(Struct, kw_only=True, rename="camel"):
    invoice_id: int
    total_amount: Decimal
    failed_inventory_updates: list[int] = []


def decode_cart(entry: bytes | None, cart_id: int) -> CartValue:
    if entry is None:
        raise NotFoundError(f"Cart: {cart_id} not found!")
    return msgpack.decode(entry, type=CartValue)


def cart_event(event_type: type, cart: CartValue, invoice_id: int | None = None):
    return event_type(
        cart_id=cart.cart_id,
        user_id=cart.user_id,
        total=cart.total,
        items=[CartEventItem(product_id=l.product_id, quantity=l.quantity, price=l.unit_price, total=l.total)
               for l in cart.lines],
        invoice_id=invoice_id,
    )


class CartLogic:
    def __init__(self, db, product_client: ServiceClient, invoice_client: ServiceClient,
                 publish=None, policy: RetryPolicy | None = None, logger=None):
        self.db = db
        self.product_client = product_client
        self.invoice_client = invoice_client
        self.publish = publish or KafkaProducerSingleton.publish
        self.policy = policy or cas_retry_policy()
        self.logger = logger or logging.getLogger("cart-service")

    async def get_cart(self, cart_id: int) -> CartValue:
        entry = await retry_db_call(self.db.get, cart_key(cart_id))
        return decode_cart(entry, cart_id)

    async def get_or_create_cart(self, principal: Principal) -> CartValue:
        pointer = user_cart_key(principal.user_id)
        existing = await retry_db_call(self.db.get, pointer)
        if existing is not None:
            return await self.get_cart(int(existing))

        cart_id = await retry_db_call(self.db.incr, CART_SEQ_KEY)
        cart = CartValue(cart_id=cart_id, user_id=principal.user_id)

        def transform(current):
            if current is not None:
                return [], (int(current), False)
            return [Write(cart_key(cart_id), msgpack.encode(cart)),
                    Write(pointer, str(cart_id).encode())], (cart_id, True)

        stored_id, created = await compare_and_swap(self.db, [pointer], transform, self.policy)
        if not created:
            return await self.get_cart(stored_id)
        self.logger.info(f"[CART {cart_id}] Created for user {principal.user_id}")
        await self.publish(cart_event(CartCreated, cart), CART_TOPICS, key=str(cart_id))
        return cart

    async def _fetch_product(self, principal: Principal, product_id: int) -> dict:
        product = unwrap(await self.product_client.get(f"/products/{product_id}", principal))
        if not product:
            raise NotFoundError(f"Product: {product_id} not found!")
        return product

    async def _mutate(self, cart_id: int, mutation) -> CartValue:
        key = cart_key(cart_id)

        def transform(entry):
            cart = decode_cart(entry, cart_id)
            mutation(cart)
            cart.recompute_total()
            return [Write(key, msgpack.encode(cart))], cart

        return await compare_and_swap(self.db, [key], transform, self.policy)

    async def _set_line(self, principal: Principal, product_id: int, quantity: int, relative: bool) -> CartValue:
        cart = await self.get_or_create_cart(principal)
        product = await self._fetch_product(principal, product_id)
        try:
            price = to_money(product["price"])
        except (KeyError, ValueError):
            raise ValidationError(f"Product {product_id} has no valid price")
        available = int(product.get("quantity", 0))
        line_id = None
        if cart.find_line(product_id) is None:
            line_id = await retry_db_call(self.db.incr, CART_LINE_SEQ_KEY)

        def mutation(c: CartValue):
            line = c.find_line(product_id)
            if line is None and not relative:
                raise NotFoundError(f"Product {product_id} is not in the cart")
            wanted = quantity + (line.quantity if line and relative else 0)
            if wanted > available:
                raise InsufficientStockError(f"Only {available} units of product {product_id} available")
            if line is None:
                if line_id is None:
                    raise ConflictError(f"Line for product {product_id} was removed concurrently")
                c.lines.append(CartLineValue(line_id=line_id, product_id=product_id, quantity=wanted,
                                             unit_price=price, total=line_total(price, wanted)))
            else:
                line.quantity = wanted
                line.unit_price = price
                line.total = line_total(price, wanted)

        cart = await self._mutate(cart.cart_id, mutation)
        self.logger.info(f"[CART {cart.cart_id}] Product {product_id} quantity set, total={cart.total}")
        await self.publish(cart_event(CartUpdated, cart), CART_TOPICS, key=str(cart.cart_id))
        return cart

    async def add_to_cart(self, principal: Principal, product_id: int, quantity: int) -> CartValue:
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")
        return await self._set_line(principal, product_id, quantity, relative=True)

    async def update_quantity(self, principal: Principal, product_id: int, quantity: int) -> CartValue:
        if quantity <= 0:
            return await self.remove_from_cart(principal, product_id)
        return await self._set_line(principal, product_id, quantity, relative=False)

    async def remove_from_cart(self, principal: Principal, product_id: int) -> CartValue:
        cart = await self.get_or_create_cart(principal)

        def mutation(c: CartValue):
            line = c.find_line(product_id)
            if line is None:
                raise NotFoundError(f"Product {product_id} is not in the cart")
            c.lines.remove(line)

        cart = await self._mutate(cart.cart_id, mutation)
        self.logger.info(f"[CART {cart.cart_id}] Product {product_id} removed, total={cart.total}")
        await self.publish(cart_event(CartUpdated, cart), CART_TOPICS, key=str(cart.cart_id))
        return cart

    async def clear_cart(self, principal: Principal) -> CartValue:
        cart = await self.get_or_create_cart(principal)
        cart = await self._mutate(cart.cart_id, lambda c: c.lines.clear())
        self.logger.info(f"[CART {cart.cart_id}] Cleared")
        await self.publish(cart_event(CartCleared, cart), CART_TOPICS, key=str(cart.cart_id))
        return cart

    async def checkout(self, principal: Principal, cart_id: int, ship_address: str | None) -> CheckoutResult:
        """Turn the cart into an invoice.

        The invoice is the commit point: if it cannot be created the cart is
        left untouched and the error propagates. Inventory decrements after
        that are best effort; lines that could not be decremented are handed
        to the inventory reconciler as an ORDER_PLACED event whose id matches
        the idempotency keys of the direct calls, so nothing is applied twice.
        """
        cart = await self.get_cart(cart_id)
        if cart.user_id != principal.user_id and not principal.is_admin:
            raise ForbiddenError(f"Cart {cart_id} belongs to another user")
        if not cart.lines:
            raise EmptyCartError(f"Cannot checkout empty cart {cart_id}")

        self.logger.info(f"[CART {cart_id}] Checkout started: {len(cart.lines)} lines, total={cart.total}")
        invoice_request = {
            "userId": cart.user_id,
            "shipAddress": ship_address,
            "totalAmount": str(cart.total),
            "items": [{"productId": l.product_id,
                       "quantity": l.quantity,
                       "price": str(unit_price_of(l.total, l.quantity))} for l in cart.lines],
        }
        response = await self.invoice_client.post("/invoices/create-from-cart", principal,
                                                  json=invoice_request,
                                                  headers={"Idempotency-Key": f"checkout-{cart_id}-{uuid.uuid4()}"})
        invoice = unwrap(response)
        invoice_id = int(invoice["invoiceId"])
        total_amount = to_money(invoice["totalAmount"])
        self.logger.info(f"[CART {cart_id}] Invoice {invoice_id} created, total={total_amount}")

        event_id = checkout_event_id(invoice_id)
        failed: list[CartLineValue] = []
        for line in cart.lines:
            try:
                await self.product_client.patch(f"/products/{line.product_id}/inventory", principal,
                                                json={"delta": -line.quantity},
                                                headers={"Idempotency-Key": f"{event_id}:{line.product_id}"})
            except ServiceError as e:
                self.logger.error(f"[CART {cart_id}] Inventory update failed for product {line.product_id}: {e}")
                failed.append(line)

        if failed:
            await self._resync_inventory(event_id, invoice_id, cart.user_id, failed)

        checked_out = {l.line_id for l in cart.lines}

        def remove_checked_out(c: CartValue):
            # lines added while the invoice was being created stay in the cart
            c.lines = [l for l in c.lines if l.line_id not in checked_out]

        await self._mutate(cart_id, remove_checked_out)
        try:
            await self.publish(cart_event(CartCheckout, cart, invoice_id), CART_TOPICS, key=str(cart_id))
        except ServiceError as e:
            self.logger.error(f"[CART {cart_id}] Failed to publish checkout event: {e}")

        self.logger.info(f"[CART {cart_id}] Checkout completed with invoice {invoice_id}")
        return CheckoutResult(invoice_id=invoice_id, total_amount=total_amount,
                              failed_inventory_updates=[l.product_id for l in failed])

    async def _resync_inventory(self, event_id: str, invoice_id: int, user_id: int, lines: list[CartLineValue]):
        event = OrderPlaced(event_id=event_id, invoice_id=invoice_id, user_id=user_id,
                            items=[OrderItem(product_id=l.product_id, quantity=l.quantity, price=l.unit_price)
                                   for l in lines])
        try:
            await self.publish(event, ORDER_TOPICS, key=str(invoice_id))
            self.logger.info(f"[CART] Handed {len(lines)} inventory updates for invoice {invoice_id} "
                             f"to the reconciler, eventId={event_id}")
        except ServiceError as e:
            self.logger.error(f"[CART] Inventory re-sync for invoice {invoice_id} could not be published: {e}")
