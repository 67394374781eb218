from common.config import KAFKA_BOOTSTRAP_SERVERS
from common.errors import InvalidTransitionError, NotFoundError
from common.events import PAYMENT_EVENTS, PaymentCompleted, PaymentFailed, decode_event
from common.kafka.kafkaConsumer import KafkaConsumerSingleton as KafkaConsumer
from common.kafka.kafkaProducer import KafkaProducerSingleton as KafkaProducer
from common.kafka.topics_config import INVOICE_PAYMENT_TOPIC
from invoice.invoice_logic import STATUS_PAID, STATUS_PAYMENT_FAILED, InvoiceLogic

TOPICS = [INVOICE_PAYMENT_TOPIC]
GROUP_ID = "invoice-group"


class Kafka:
    """Settles invoices from payment outcomes."""

    def __init__(self, logger, logic: InvoiceLogic) -> None:
        self.logger = logger
        self.logic = logic

    async def handle_event(self, raw: bytes):
        event = decode_event(raw, PAYMENT_EVENTS)
        self.logger.info(f"Received {type(event).__name__} eventId={event.event_id} invoiceId={event.invoice_id}")

        if isinstance(event, PaymentCompleted):
            status = STATUS_PAID
        elif isinstance(event, PaymentFailed):
            status = STATUS_PAYMENT_FAILED
        else:
            return

        try:
            await self.logic.update_status(event.invoice_id, status, event.transaction_id)
        except InvalidTransitionError as e:
            self.logger.warning(f"[INVOICE {event.invoice_id}] Ignoring {type(event).__name__} "
                                f"eventId={event.event_id}: {e}")
        except NotFoundError:
            self.logger.warning(f"[INVOICE {event.invoice_id}] Unknown invoice in eventId={event.event_id}")

    async def init(self):
        self.logger.info("Initializing Kafka")
        await KafkaProducer.get_instance(KAFKA_BOOTSTRAP_SERVERS)
        await KafkaConsumer.get_instance(
            TOPICS,
            KAFKA_BOOTSTRAP_SERVERS,
            GROUP_ID,
            self.handle_event
        )

    async def close(self):
        self.logger.info("Closing Kafka")
        await KafkaProducer.close()
        await KafkaConsumer.close()
