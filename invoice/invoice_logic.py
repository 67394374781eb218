import logging
from datetime import datetime
from decimal import Decimal

from msgspec import msgpack, Struct, field

from common.config import cas_retry_policy
from common.db.util import (AddMember, Delete, RemoveMember, Write, compare_and_swap, retry_db_call)
from common.errors import InvalidTransitionError, NotFoundError, ValidationError
from common.events import InvoiceCreated, InvoiceItemDto, InvoiceUpdated, utcnow
from common.kafka.kafkaProducer import KafkaProducerSingleton
from common.kafka.outbox import publish_once
from common.kafka.topics_config import INVOICE_TOPICS
from common.money import line_total, money_sum, to_money
from common.retry import RetryPolicy

STATUS_PENDING = "PENDING"
STATUS_PAID = "PAID"
STATUS_PAYMENT_FAILED = "PAYMENT_FAILED"
INVOICE_STATUSES = (STATUS_PENDING, STATUS_PAID, STATUS_PAYMENT_FAILED)

IDEMPOTENCY_TTL = 24 * 3600

INVOICE_SEQ_KEY = "invoice:seq"
INVOICE_ITEM_SEQ_KEY = "invoice:item:seq"
INVOICE_IDS_KEY = "invoice:ids"


def invoice_key(invoice_id: int) -> str:
    return f"invoice:{invoice_id}"


def user_invoices_key(user_id: int) -> str:
    return f"invoice:user:{user_id}"


def idempotency_key_of(key: str) -> str:
    return f"invoice:idempotency:{key}"


def next_status(current: str, requested: str) -> str:
    """Validate a status change.

    PAID is terminal. PAYMENT_FAILED may still become PAID when a later payment
    succeeds. Nothing returns to PENDING. Requesting the current status is
    always accepted.
    """
    if requested not in INVOICE_STATUSES:
        raise ValidationError(f"Unknown invoice status: {requested}")
    if requested == current:
        return current
    if current == STATUS_PAID or requested == STATUS_PENDING:
        raise InvalidTransitionError(f"Invoice cannot move from {current} to {requested}")
    return requested


class InvoiceItemValue(Struct, kw_only=True, rename="camel"):
    item_id: int
    product_id: int
    quantity: int
    price: Decimal
    subtotal: Decimal


class InvoiceValue(Struct, kw_only=True, rename="camel"):
    invoice_id: int
    user_id: int
    ship_address: str
    status: str
    total_amount: Decimal
    # False when the caller supplied the total; item edits then leave it alone
    total_derived: bool = True
    transaction_id: str | None = None
    order_date: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    customer_email: str | None = None
    customer_name: str | None = None
    items: list[InvoiceItemValue] = []


class CartLine(Struct, kw_only=True, rename="camel"):
    product_id: int
    quantity: int
    price: Decimal | None = None


def decode_invoice(entry: bytes | None, invoice_id: int) -> InvoiceValue:
    if entry is None:
        raise NotFoundError(f"Invoice: {invoice_id} not found!")
    return msgpack.decode(entry, type=InvoiceValue)


def build_items(lines: list[CartLine], first_item_id: int) -> list[InvoiceItemValue]:
    items = []
    for offset, line in enumerate(lines):
        if line.price is None:
            raise ValidationError(f"Price is required for item with product {line.product_id}")
        if line.quantity <= 0:
            raise ValidationError(f"Quantity must be positive for product {line.product_id}")
        try:
            price = to_money(line.price)
        except ValueError as e:
            raise ValidationError(str(e))
        items.append(InvoiceItemValue(item_id=first_item_id + offset,
                                      product_id=line.product_id,
                                      quantity=line.quantity,
                                      price=price,
                                      subtotal=line_total(price, line.quantity)))
    return items


def invoice_event(event_type: type, invoice: InvoiceValue):
    return event_type(
        invoice_id=invoice.invoice_id,
        user_id=invoice.user_id,
        status=invoice.status,
        total_amount=invoice.total_amount,
        ship_address=invoice.ship_address,
        transaction_id=invoice.transaction_id,
        created_at=invoice.order_date,
        customer_email=invoice.customer_email,
        customer_name=invoice.customer_name,
        items=[InvoiceItemDto(product_id=i.product_id, quantity=i.quantity, price=i.price, subtotal=i.subtotal)
               for i in invoice.items],
    )


class InvoiceLogic:
    def __init__(self, db, publish=None, policy: RetryPolicy | None = None, logger=None):
        self.db = db
        self.publish = publish or KafkaProducerSingleton.publish
        self.policy = policy or cas_retry_policy()
        self.logger = logger or logging.getLogger("invoice-service")

    async def create_from_cart(self, user_id: int | None, ship_address: str | None, lines: list[CartLine],
                               total_amount=None, idempotency_key: str | None = None,
                               customer_email: str | None = None,
                               customer_name: str | None = None) -> tuple[InvoiceValue, bool]:
        """Persist an invoice from a cart snapshot.

        Returns the invoice and whether it was created by this call. A repeated
        ``idempotency_key`` returns the invoice created the first time.
        """
        if user_id is None:
            raise ValidationError("User ID cannot be null")
        if ship_address is None or not ship_address.strip():
            raise ValidationError("Ship address cannot be empty")
        if total_amount is not None:
            try:
                total_amount = to_money(total_amount)
            except ValueError as e:
                raise ValidationError(str(e))

        if idempotency_key:
            existing = await retry_db_call(self.db.get, idempotency_key_of(idempotency_key))
            if existing is not None:
                invoice = await self.get_invoice(int(existing))
                self.logger.info(f"[INVOICE {invoice.invoice_id}] Replayed creation for key={idempotency_key}")
                await self.publish_created(invoice)
                return invoice, False

        invoice_id = await retry_db_call(self.db.incr, INVOICE_SEQ_KEY)
        first_item_id = 1
        if lines:
            first_item_id = await retry_db_call(self.db.incrby, INVOICE_ITEM_SEQ_KEY, len(lines)) - len(lines) + 1
        items = build_items(lines, first_item_id)

        invoice = InvoiceValue(
            invoice_id=invoice_id,
            user_id=user_id,
            ship_address=ship_address.strip(),
            status=STATUS_PENDING,
            total_amount=total_amount if total_amount is not None else money_sum(i.subtotal for i in items),
            total_derived=total_amount is None,
            customer_email=customer_email,
            customer_name=customer_name,
            items=items,
        )

        keys = [idempotency_key_of(idempotency_key)] if idempotency_key else []

        def transform(*current):
            if current and current[0] is not None:
                return [], (int(current[0]), False)
            writes = [
                Write(invoice_key(invoice_id), msgpack.encode(invoice)),
                AddMember(user_invoices_key(user_id), invoice_id),
                AddMember(INVOICE_IDS_KEY, invoice_id),
            ]
            if keys:
                writes.append(Write(keys[0], str(invoice_id).encode(), ttl=IDEMPOTENCY_TTL))
            return writes, (invoice_id, True)

        stored_id, created = await compare_and_swap(self.db, keys, transform, self.policy)
        if not created:
            # A concurrent request with the same key won
            invoice = await self.get_invoice(stored_id)
            await self.publish_created(invoice)
            return invoice, False

        self.logger.info(f"[INVOICE {invoice_id}] Created for user {user_id}: "
                         f"{len(items)} items, total={invoice.total_amount}")
        await self.publish_created(invoice)
        return invoice, True

    async def publish_created(self, invoice: InvoiceValue):
        """INVOICE_CREATED under a stable id, published again on a replay only if no earlier publish succeeded."""
        event = invoice_event(InvoiceCreated, invoice)
        event.event_id = f"invoice-created-{invoice.invoice_id}"
        await publish_once(self.db, self.publish, event, INVOICE_TOPICS, key=str(invoice.invoice_id))

    async def get_invoice(self, invoice_id: int) -> InvoiceValue:
        entry = await retry_db_call(self.db.get, invoice_key(invoice_id))
        return decode_invoice(entry, invoice_id)

    async def _get_many(self, ids) -> list[InvoiceValue]:
        ids = sorted(int(i) for i in ids)
        if not ids:
            return []
        entries = await retry_db_call(self.db.mget, [invoice_key(i) for i in ids])
        return [msgpack.decode(e, type=InvoiceValue) for e in entries if e is not None]

    async def list_for_user(self, user_id: int) -> list[InvoiceValue]:
        return await self._get_many(await retry_db_call(self.db.smembers, user_invoices_key(user_id)))

    async def list_by_status(self, status: str) -> list[InvoiceValue]:
        if status not in INVOICE_STATUSES:
            raise ValidationError(f"Unknown invoice status: {status}")
        invoices = await self._get_many(await retry_db_call(self.db.smembers, INVOICE_IDS_KEY))
        return [i for i in invoices if i.status == status]

    async def update_status(self, invoice_id: int, status: str,
                            transaction_id: str | None = None) -> tuple[InvoiceValue, bool]:
        """Move the invoice to ``status``; returns the invoice and whether the status changed.

        Raises ``InvalidTransitionError`` for a move out of PAID or back to PENDING.
        """
        key = invoice_key(invoice_id)

        def transform(entry):
            invoice = decode_invoice(entry, invoice_id)
            new_status = next_status(invoice.status, status)
            changed = new_status != invoice.status
            invoice.status = new_status
            if transaction_id:
                invoice.transaction_id = transaction_id
            invoice.updated_at = utcnow()
            return [Write(key, msgpack.encode(invoice))], (invoice, changed)

        invoice, changed = await compare_and_swap(self.db, [key], transform, self.policy)
        if changed:
            self.logger.info(f"[INVOICE {invoice_id}] Status -> {invoice.status} (transaction {transaction_id})")
        else:
            self.logger.info(f"[INVOICE {invoice_id}] Already {invoice.status}, nothing to change")
        # Each status is entered at most once, so a repeated request only
        # republishes a transition whose publish failed
        if invoice.status != STATUS_PENDING:
            event = invoice_event(InvoiceUpdated, invoice)
            event.event_id = f"invoice-{invoice_id}-{invoice.status}"
            await publish_once(self.db, self.publish, event, INVOICE_TOPICS, key=str(invoice_id))
        return invoice, changed

    async def update_item(self, invoice_id: int, item_id: int,
                          quantity: int | None = None, price=None) -> InvoiceValue:
        if quantity is None and price is None:
            raise ValidationError("Nothing to update")
        if quantity is not None and quantity <= 0:
            raise ValidationError("Quantity must be positive")
        if price is not None:
            try:
                price = to_money(price)
            except ValueError as e:
                raise ValidationError(str(e))
        key = invoice_key(invoice_id)

        def transform(entry):
            invoice = decode_invoice(entry, invoice_id)
            if invoice.status != STATUS_PENDING:
                raise InvalidTransitionError(f"Invoice {invoice_id} is {invoice.status}, items are frozen")
            item = next((i for i in invoice.items if i.item_id == item_id), None)
            if item is None:
                raise NotFoundError(f"Item: {item_id} not found on invoice {invoice_id}")
            if quantity is not None:
                item.quantity = quantity
            if price is not None:
                item.price = price
            item.subtotal = line_total(item.price, item.quantity)
            if invoice.total_derived:
                invoice.total_amount = money_sum(i.subtotal for i in invoice.items)
            invoice.updated_at = utcnow()
            return [Write(key, msgpack.encode(invoice))], invoice

        invoice = await compare_and_swap(self.db, [key], transform, self.policy)
        self.logger.info(f"[INVOICE {invoice_id}] Item {item_id} updated, total={invoice.total_amount}")
        await self.publish(invoice_event(InvoiceUpdated, invoice), INVOICE_TOPICS, key=str(invoice_id))
        return invoice

    async def delete_invoice(self, invoice_id: int):
        key = invoice_key(invoice_id)

        def transform(entry):
            invoice = decode_invoice(entry, invoice_id)
            return [
                Delete(key),
                RemoveMember(user_invoices_key(invoice.user_id), invoice_id),
                RemoveMember(INVOICE_IDS_KEY, invoice_id),
            ], invoice

        await compare_and_swap(self.db, [key], transform, self.policy)
        self.logger.info(f"[INVOICE {invoice_id}] Deleted")
