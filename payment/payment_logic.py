import logging
from datetime import datetime
from decimal import Decimal

from msgspec import msgpack, Struct, field

from common.auth import Principal
from common.config import cas_retry_policy
from common.db.util import Write, commit, compare_and_swap, retry_db_call
from common.errors import (InvalidTransitionError, NotFoundError, SecurityError, TransientDependencyError,
                           ValidationError)
from common.events import PaymentCompleted, PaymentFailed, PaymentInitialized, utcnow
from common.http.client import ServiceClient, unwrap
from common.kafka.kafkaProducer import KafkaProducerSingleton
from common.kafka.outbox import publish_once
from common.kafka.topics_config import PAYMENT_TOPICS
from common.money import to_minor_units, to_money
from common.retry import RetryPolicy
from payment import vnpay
from payment.vnpay import VNPayConfig

STATUS_PENDING = "PENDING"
STATUS_PAID = "PAID"
STATUS_PAYMENT_FAILED = "PAYMENT_FAILED"
STATUS_ERROR = "ERROR"
STATUS_UNKNOWN = "UNKNOWN"
TERMINAL_STATUSES = (STATUS_PAID, STATUS_PAYMENT_FAILED)


def transaction_key(reference: str) -> str:
    return f"payment:txn:{reference}"


def latest_key(invoice_id: int) -> str:
    return f"payment:invoice:{invoice_id}"


class PaymentTransaction(Struct, kw_only=True, rename="camel"):
    transaction_id: str
    invoice_id: int
    status: str
    provider_transaction_id: str | None = None
    user_id: int | None = None
    amount: Decimal | None = None
    bank_code: str | None = None
    payment_method: str = "VNPAY"
    currency_code: str = "VND"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    error_code: str | None = None
    error_message: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None


class PaymentSession(Struct, kw_only=True, rename="camel"):
    payment_url: str
    transaction_id: str
    invoice_id: int
    amount: Decimal
    bank_code: str | None = None


class CallbackResult(Struct, kw_only=True, rename="camel"):
    status: str
    invoice_id: int
    transaction_id: str
    error_code: str | None = None
    duplicate: bool = False


def payment_event(event_type: type, txn: PaymentTransaction):
    return event_type(
        transaction_id=txn.transaction_id,
        provider_transaction_id=txn.provider_transaction_id,
        invoice_id=txn.invoice_id,
        user_id=txn.user_id,
        amount=txn.amount,
        status=txn.status,
        payment_method=txn.payment_method,
        bank_code=txn.bank_code,
        error_code=txn.error_code,
        error_message=txn.error_message,
        customer_email=txn.customer_email,
        customer_name=txn.customer_name,
    )


class PaymentLogic:
    def __init__(self, db, invoice_client: ServiceClient, config: VNPayConfig,
                 publish=None, policy: RetryPolicy | None = None, logger=None):
        self.db = db
        self.invoice_client = invoice_client
        self.config = config
        self.publish = publish or KafkaProducerSingleton.publish
        self.policy = policy or cas_retry_policy()
        self.logger = logger or logging.getLogger("payment-service")

    async def _fetch_invoice(self, invoice_id: int, principal: Principal | None) -> dict:
        return unwrap(await self.invoice_client.get(f"/invoices/{invoice_id}", principal)) or {}

    async def get_transaction(self, reference: str) -> PaymentTransaction | None:
        entry = await retry_db_call(self.db.get, transaction_key(reference))
        return msgpack.decode(entry, type=PaymentTransaction) if entry else None

    async def _latest_transaction(self, invoice_id: int) -> PaymentTransaction | None:
        reference = await retry_db_call(self.db.get, latest_key(invoice_id))
        return await self.get_transaction(reference.decode()) if reference is not None else None

    async def _publish_outcome(self, txn: PaymentTransaction):
        """Outcome event under a stable id, so a repeated callback republishes only a failed publish."""
        event = payment_event(PaymentCompleted if txn.status == STATUS_PAID else PaymentFailed, txn)
        event.event_id = f"payment-{txn.transaction_id}-{txn.status}"
        await publish_once(self.db, self.publish, event, PAYMENT_TOPICS, key=str(txn.invoice_id))

    async def create_payment_session(self, principal: Principal, invoice_id: int, amount,
                                     bank_code: str | None = None, return_url: str | None = None,
                                     description: str | None = None,
                                     language: str | None = None) -> PaymentSession:
        """Sign a gateway redirect for ``invoice_id``.

        The PENDING transaction is stored before the URL is handed out, so a
        callback can never arrive for a reference we do not know. When the
        invoice owner answers, the amount must equal the invoice total and a
        paid invoice gets no new session.
        """
        try:
            amount = to_money(amount)
        except ValueError as e:
            raise ValidationError(str(e))
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        latest = await self._latest_transaction(invoice_id)
        if latest is not None and latest.status == STATUS_PAID:
            raise InvalidTransitionError(f"Invoice {invoice_id} is already paid")

        user_id, customer_name = principal.user_id, None
        try:
            invoice = await self._fetch_invoice(invoice_id, principal)
        except TransientDependencyError as e:
            self.logger.warning(f"[PAYMENT] Invoice {invoice_id} lookup failed, continuing: {e}")
        else:
            if invoice.get("status") == STATUS_PAID:
                raise InvalidTransitionError(f"Invoice {invoice_id} is already paid")
            total = invoice.get("totalAmount")
            if total is not None and to_money(total) != amount:
                raise ValidationError(f"Amount {amount} does not match invoice total {to_money(total)}")
            user_id = invoice.get("userId", user_id)
            customer_name = invoice.get("customerName")

        txn_ref = vnpay.random_txn_ref()
        params = vnpay.payment_params(self.config, invoice_id, amount, txn_ref, bank_code,
                                      return_url, description, language)
        payment_url = vnpay.build_payment_url(self.config, params)

        txn = PaymentTransaction(
            transaction_id=txn_ref,
            invoice_id=invoice_id,
            status=STATUS_PENDING,
            user_id=user_id,
            amount=amount,
            bank_code=params["vnp_BankCode"],
            customer_email=principal.email,
            customer_name=customer_name,
        )
        await commit(self.db, [Write(transaction_key(txn_ref), msgpack.encode(txn)),
                               Write(latest_key(invoice_id), txn_ref.encode())])
        self.logger.info(f"[PAYMENT {txn_ref}] Session created for invoice {invoice_id}, amount={amount}")

        await self.publish(payment_event(PaymentInitialized, txn), PAYMENT_TOPICS, key=str(invoice_id))
        return PaymentSession(payment_url=payment_url, transaction_id=txn_ref, invoice_id=invoice_id,
                              amount=amount, bank_code=params["vnp_BankCode"])

    async def handle_callback(self, params: dict[str, str]) -> CallbackResult:
        raw_invoice_id = params.get("invoiceId")
        txn_ref = params.get("vnp_TxnRef")
        try:
            invoice_id = int(raw_invoice_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid invoiceId: {raw_invoice_id}")
        if not txn_ref:
            raise ValidationError("Missing vnp_TxnRef")

        if not vnpay.verify_signature(self.config, params):
            self.logger.error(f"[PAYMENT {txn_ref}] Invalid signature for invoice {invoice_id}")
            raise SecurityError("Invalid transaction signature")

        key = transaction_key(txn_ref)
        successful = vnpay.is_success(params)
        new_status = STATUS_PAID if successful else STATUS_PAYMENT_FAILED
        response_code = params.get("vnp_ResponseCode")

        def transform(entry):
            if entry is None:
                raise SecurityError(f"Unknown transaction reference {txn_ref}")
            txn = msgpack.decode(entry, type=PaymentTransaction)
            if txn.invoice_id != invoice_id:
                raise SecurityError(f"Transaction {txn_ref} does not belong to invoice {invoice_id}")
            paid_amount = params.get("vnp_Amount")
            if txn.amount is not None and paid_amount != str(to_minor_units(txn.amount)):
                raise SecurityError(f"Transaction {txn_ref} paid {paid_amount}, expected {txn.amount}")
            if txn.status in TERMINAL_STATUSES:
                return [], (txn, False)
            now = utcnow()
            txn.status = new_status
            txn.provider_transaction_id = params.get("vnp_TransactionNo") or txn.provider_transaction_id
            txn.bank_code = params.get("vnp_BankCode") or txn.bank_code
            txn.updated_at = now
            txn.completed_at = now
            if not successful:
                txn.error_code = response_code
                txn.error_message = "Payment failed"
            writes = [Write(key, msgpack.encode(txn))]
            if successful:
                writes.append(Write(latest_key(invoice_id), txn_ref.encode()))
            return writes, (txn, True)

        try:
            txn, changed = await compare_and_swap(self.db, [key], transform, self.policy)
        except SecurityError as e:
            self.logger.error(f"[PAYMENT {txn_ref}] Rejected callback: {e}")
            raise

        if changed:
            self.logger.info(f"[PAYMENT {txn_ref}] {txn.status} for invoice {invoice_id}")
        else:
            self.logger.info(f"[PAYMENT {txn_ref}] Duplicate callback, already {txn.status}")
        await self._publish_outcome(txn)

        return CallbackResult(
            status="SUCCESS" if txn.status == STATUS_PAID else "FAILED",
            invoice_id=invoice_id,
            transaction_id=txn_ref,
            error_code=txn.error_code,
            duplicate=not changed,
        )

    async def get_status(self, invoice_id: int, principal: Principal | None = None) -> PaymentTransaction:
        """Latest transaction for the invoice.

        Without a local record the invoice owner is asked once and its answer
        cached. An unknown invoice reports UNKNOWN and an unreachable one ERROR;
        neither is cached.
        """
        txn = await self._latest_transaction(invoice_id)
        if txn is not None:
            return txn

        try:
            invoice = await self._fetch_invoice(invoice_id, principal)
        except NotFoundError:
            self.logger.warning(f"No invoice data found for ID {invoice_id}")
            return PaymentTransaction(transaction_id=f"invoice-{invoice_id}", invoice_id=invoice_id,
                                      status=STATUS_UNKNOWN, error_message="No payment information found")
        except TransientDependencyError as e:
            self.logger.error(f"Error getting invoice status for {invoice_id}: {e}")
            return PaymentTransaction(transaction_id=f"invoice-{invoice_id}", invoice_id=invoice_id,
                                      status=STATUS_ERROR, error_message=f"Failed to get payment status: {e}")

        reference = f"invoice-{invoice_id}"
        amount = invoice.get("totalAmount")
        txn = PaymentTransaction(
            transaction_id=reference,
            invoice_id=invoice_id,
            status=invoice.get("status") or STATUS_UNKNOWN,
            user_id=invoice.get("userId"),
            amount=to_money(amount) if amount is not None else None,
        )
        await commit(self.db, [Write(transaction_key(reference), msgpack.encode(txn)),
                               Write(latest_key(invoice_id), reference.encode())])
        self.logger.info(f"Cached payment status {txn.status} for invoice {invoice_id} from invoice service")
        return txn
