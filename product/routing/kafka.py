from opentelemetry import metrics

from common.config import KAFKA_BOOTSTRAP_SERVERS
from common.errors import ConflictError, NotFoundError, TransientDependencyError
from common.events import ORDER_EVENTS, OrderCancelled, decode_event
from common.kafka.kafkaConsumer import KafkaConsumerSingleton as KafkaConsumer
from common.kafka.kafkaProducer import KafkaProducerSingleton as KafkaProducer
from common.kafka.topics_config import PRODUCT_ORDER_TOPIC
from product.inventory_logic import InventoryLedger, QuantityChange, aggregate_deltas

TOPICS = [PRODUCT_ORDER_TOPIC]
GROUP_ID = "product-group"

meter = metrics.get_meter("product-service")
reconcile_failures = meter.create_counter(
    "inventory.reconcile.failures",
    description="Per-product inventory updates from order events that were given up on",
)


class Kafka:
    """Applies order events to the inventory ledger."""

    def __init__(self, logger, logic: InventoryLedger) -> None:
        self.logger = logger
        self.logic = logic

    async def handle_event(self, raw: bytes):
        event = decode_event(raw, ORDER_EVENTS)
        self.logger.info(f"Received {type(event).__name__} eventId={event.event_id} invoiceId={event.invoice_id}")

        sign = 1 if isinstance(event, OrderCancelled) else -1
        deltas = aggregate_deltas(event.items, sign)
        if not deltas:
            self.logger.warning(f"No valid items to process in order event: {event.event_id}")
            return

        changes: list[QuantityChange] = []
        transient: TransientDependencyError | None = None
        for product_id, delta in deltas.items():
            try:
                change = await self.logic.apply_delta(product_id, delta, f"{event.event_id}:{product_id}")
                changes.append(change)
            except NotFoundError:
                self.logger.warning(f"Product not found: {product_id}, eventId={event.event_id}")
                reconcile_failures.add(1, {"reason": "not_found"})
            except ConflictError as e:
                self.logger.error(f"Giving up on product {product_id} for eventId={event.event_id}: {e}")
                reconcile_failures.add(1, {"reason": "conflict"})
            except TransientDependencyError as e:
                self.logger.error(f"Inventory store unavailable for product {product_id}: {e}")
                reconcile_failures.add(1, {"reason": "unavailable"})
                transient = e

        applied = [c for c in changes if c.applied]
        self.logger.info(f"Inventory update for eventId={event.event_id}: {len(applied)}/{len(deltas)} applied")
        # Changes recorded by an earlier delivery are published again in case that publish failed
        await self.logic.publish_changes(changes, event.invoice_id, event.event_id)
        await self.logic.publish_alerts(changes, event.event_id)

        # Applied products are recorded, so redelivery only touches the ones that failed
        if transient is not None:
            raise transient

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
