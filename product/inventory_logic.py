import logging
from datetime import datetime
from decimal import Decimal

from msgspec import msgpack, Struct, field

from common.config import cas_retry_policy
from common.db.util import AddMember, Write, commit, compare_and_swap, retry_db_call
from common.errors import NotFoundError, ValidationError
from common.events import (InventoryChange, InventoryChanged, LowStockAlert, OrderItem, utcnow)
from common.kafka.kafkaProducer import KafkaProducerSingleton
from common.kafka.outbox import publish_once
from common.kafka.topics_config import INVENTORY_TOPICS, LOW_STOCK_TOPICS
from common.money import to_money
from common.retry import RetryPolicy

DEFAULT_REORDER_LEVEL = 5
APPLIED_MARKER_TTL = 7 * 24 * 3600

PRODUCT_SEQ_KEY = "product:seq"
PRODUCT_IDS_KEY = "product:ids"


def product_key(product_id: int) -> str:
    return f"product:{product_id}"


def applied_marker_key(idempotency_key: str) -> str:
    return f"inventory:applied:{idempotency_key}"


def apply_delta(current: int, delta: int) -> int:
    return max(0, current + delta)


def needs_low_stock_alert(previous: int, new: int, reorder_level: int) -> bool:
    """A decrement that leaves the product at or below its reorder level."""
    return new < previous and new <= reorder_level


def aggregate_deltas(items: list[OrderItem], sign: int) -> dict[int, int]:
    """Net quantity change per product; lines without a product or a positive quantity are skipped."""
    deltas: dict[int, int] = {}
    for item in items:
        if item.product_id is None or item.quantity is None or item.quantity <= 0:
            logging.warning(f"Skipping invalid order line: {item}")
            continue
        deltas[item.product_id] = deltas.get(item.product_id, 0) + sign * item.quantity
    return deltas


class ProductValue(Struct, kw_only=True, rename="camel"):
    product_id: int
    name: str
    price: Decimal
    quantity: int = 0
    reorder_level: int = DEFAULT_REORDER_LEVEL
    category: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def low_stock(self) -> bool:
        return self.quantity <= self.reorder_level


class QuantityChange(Struct, kw_only=True, rename="camel"):
    product_id: int
    previous_quantity: int
    new_quantity: int
    delta: int
    reorder_level: int
    # False when the change was recorded by an earlier call with the same key
    applied: bool = True

    @property
    def needs_low_stock_alert(self) -> bool:
        return needs_low_stock_alert(self.previous_quantity, self.new_quantity, self.reorder_level)

    def to_event_change(self) -> InventoryChange:
        return InventoryChange(product_id=self.product_id,
                               previous_quantity=self.previous_quantity,
                               new_quantity=self.new_quantity,
                               delta=self.delta)


def decode_product(entry: bytes | None, product_id: int) -> ProductValue:
    if entry is None:
        raise NotFoundError(f"Product: {product_id} not found!")
    return msgpack.decode(entry, type=ProductValue)


class InventoryLedger:
    """Authoritative per-product quantity and reorder level.

    Every quantity mutation is a WATCH/MULTI read-modify-write retried on
    conflict by ``policy``. Quantities never go below zero.
    """

    def __init__(self, db, publish=None, policy: RetryPolicy | None = None, logger=None):
        self.db = db
        self.publish = publish or KafkaProducerSingleton.publish
        self.policy = policy or cas_retry_policy()
        self.logger = logger or logging.getLogger("product-service")

    async def create_product(self, name: str, price, quantity: int = 0,
                             reorder_level: int = DEFAULT_REORDER_LEVEL,
                             category: str | None = None) -> ProductValue:
        if not name or not name.strip():
            raise ValidationError("Product name is required")
        if quantity < 0 or reorder_level < 0:
            raise ValidationError("Quantity and reorder level cannot be negative")
        try:
            price = to_money(price)
        except ValueError as e:
            raise ValidationError(str(e))
        if price < 0:
            raise ValidationError("Price cannot be negative")

        product_id = await retry_db_call(self.db.incr, PRODUCT_SEQ_KEY)
        product = ProductValue(product_id=product_id, name=name.strip(), price=price,
                               quantity=quantity, reorder_level=reorder_level, category=category)
        await commit(self.db, [Write(product_key(product_id), msgpack.encode(product)),
                               AddMember(PRODUCT_IDS_KEY, product_id)])
        self.logger.info(f"[PRODUCT {product_id}] Created with quantity={quantity} reorderLevel={reorder_level}")
        return product

    async def get_product(self, product_id: int) -> ProductValue:
        entry = await retry_db_call(self.db.get, product_key(product_id))
        return decode_product(entry, product_id)

    async def has_stock(self, product_id: int, quantity: int) -> bool:
        product = await self.get_product(product_id)
        return product.quantity >= quantity

    async def set_quantity(self, product_id: int, quantity: int) -> QuantityChange:
        if quantity < 0:
            raise ValidationError(f"Quantity cannot be negative: {quantity}")
        key = product_key(product_id)

        def transform(entry):
            product = decode_product(entry, product_id)
            change = QuantityChange(product_id=product_id,
                                    previous_quantity=product.quantity,
                                    new_quantity=quantity,
                                    delta=quantity - product.quantity,
                                    reorder_level=product.reorder_level)
            product.quantity = quantity
            product.updated_at = utcnow()
            return [Write(key, msgpack.encode(product))], change

        change = await compare_and_swap(self.db, [key], transform, self.policy)
        self.logger.info(f"[PRODUCT {product_id}] Quantity set {change.previous_quantity} -> {change.new_quantity}")
        return change

    async def apply_delta(self, product_id: int, delta: int, idempotency_key: str | None = None) -> QuantityChange:
        """Add ``delta`` to the quantity, clamped at zero.

        With an ``idempotency_key`` the change is recorded in the same
        transaction as the quantity; a second call with the same key changes
        nothing and returns the recorded change with ``applied=False``.
        """
        key = product_key(product_id)
        keys = [key]
        marker = None
        if idempotency_key:
            marker = applied_marker_key(idempotency_key)
            keys.append(marker)

        def transform(entry, applied=None):
            product = decode_product(entry, product_id)
            if applied is not None:
                recorded = msgpack.decode(applied, type=QuantityChange)
                recorded.applied = False
                return [], recorded
            new_quantity = apply_delta(product.quantity, delta)
            change = QuantityChange(product_id=product_id,
                                    previous_quantity=product.quantity,
                                    new_quantity=new_quantity,
                                    delta=new_quantity - product.quantity,
                                    reorder_level=product.reorder_level)
            product.quantity = new_quantity
            product.updated_at = utcnow()
            writes = [Write(key, msgpack.encode(product))]
            if marker:
                writes.append(Write(marker, msgpack.encode(change), ttl=APPLIED_MARKER_TTL))
            return writes, change

        change = await compare_and_swap(self.db, keys, transform, self.policy)
        if change.applied:
            self.logger.info(f"[PRODUCT {product_id}] Quantity {change.previous_quantity} -> "
                             f"{change.new_quantity} (requested delta {delta})")
        else:
            self.logger.info(f"[PRODUCT {product_id}] Delta already applied for key={idempotency_key}, skipping")
        return change

    async def update_reorder_level(self, product_id: int, reorder_level: int) -> ProductValue:
        if reorder_level < 0:
            raise ValidationError("Reorder level cannot be negative")
        key = product_key(product_id)

        def transform(entry):
            product = decode_product(entry, product_id)
            product.reorder_level = reorder_level
            product.updated_at = utcnow()
            return [Write(key, msgpack.encode(product))], product

        product = await compare_and_swap(self.db, [key], transform, self.policy)
        self.logger.info(f"[PRODUCT {product_id}] Reorder level set to {reorder_level}")
        if product.low_stock:
            await self.publish_low_stock(product.product_id, product.quantity, product.reorder_level)
        return product

    async def low_stock_products(self) -> list[ProductValue]:
        ids = sorted(int(i) for i in await retry_db_call(self.db.smembers, PRODUCT_IDS_KEY))
        if not ids:
            return []
        entries = await retry_db_call(self.db.mget, [product_key(i) for i in ids])
        products = [msgpack.decode(e, type=ProductValue) for e in entries if e is not None]
        return [p for p in products if p.low_stock]

    async def publish_low_stock(self, product_id: int, quantity: int, reorder_level: int,
                                previous_quantity: int | None = None, source: str | None = None):
        """Alert operations about ``product_id``.

        With a ``source`` (the order event or idempotency key behind the change)
        the alert has a stable id and a replay of the same change publishes it
        at most once more, only if the earlier publish failed.
        """
        self.logger.warning(f"[PRODUCT {product_id}] Low stock: {quantity}/{reorder_level}")
        alert = LowStockAlert(product_id=product_id, quantity=quantity, reorder_level=reorder_level,
                              previous_quantity=previous_quantity)
        if source is None:
            await self.publish(alert, LOW_STOCK_TOPICS, key=str(product_id))
            return
        alert.event_id = f"low-stock-{source}-{product_id}"
        await publish_once(self.db, self.publish, alert, LOW_STOCK_TOPICS, key=str(product_id))

    async def publish_alerts(self, changes: list[QuantityChange], source: str | None = None):
        for change in changes:
            if change.needs_low_stock_alert:
                await self.publish_low_stock(change.product_id, change.new_quantity, change.reorder_level,
                                             change.previous_quantity, source)

    async def publish_changes(self, changes: list[QuantityChange], invoice_id: int | None, source_event_id: str):
        """Publish the changes recorded for one order event.

        ``changes`` holds both the changes applied now and the ones recorded
        by an earlier delivery, so a redelivery republishes what a failed
        publish lost. The event id names the products it covers.
        """
        if not changes:
            return
        changes = sorted(changes, key=lambda c: c.product_id)
        products = "-".join(str(c.product_id) for c in changes)
        event = InventoryChanged(event_id=f"inventory-{source_event_id}-{products}",
                                 product_changes=[c.to_event_change() for c in changes],
                                 invoice_id=invoice_id,
                                 source_event_id=source_event_id)
        await publish_once(self.db, self.publish, event, INVENTORY_TOPICS,
                           key=str(invoice_id) if invoice_id else None)
