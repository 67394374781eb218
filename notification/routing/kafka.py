from opentelemetry import metrics

from common.config import KAFKA_BOOTSTRAP_SERVERS
from common.errors import TransientDependencyError
from common.kafka.kafkaConsumer import KafkaConsumerSingleton as KafkaConsumer
from common.kafka.kafkaProducer import KafkaProducerSingleton as KafkaProducer
from common.kafka.topics_config import EMAIL_TOPICS
from common.retry import RetryPolicy
from notification.dispatcher import NotificationDispatcher

GROUP_ID = "notification-group"

# Mail is attempted once per message; a lost notification is preferred to a blocked partition
NOTIFICATION_RETRY_POLICY = RetryPolicy(max_attempts=1, name="notification")

meter = metrics.get_meter("notification-service")
notifications_dropped = meter.create_counter(
    "notification.dropped",
    description="Notifications dropped because the mail server could not take them",
)


class Kafka:
    def __init__(self, logger, dispatcher: NotificationDispatcher) -> None:
        self.logger = logger
        self.dispatcher = dispatcher

    async def handle_event(self, raw: bytes):
        try:
            await self.dispatcher.dispatch(raw)
        except TransientDependencyError as e:
            self.logger.error(f"Dropping notification, mail delivery failed: {e}")
            notifications_dropped.add(1)

    async def init(self):
        self.logger.info("Initializing Kafka")
        # The producer is only used to dead-letter malformed messages
        await KafkaProducer.get_instance(KAFKA_BOOTSTRAP_SERVERS)
        await KafkaConsumer.get_instance(
            list(EMAIL_TOPICS),
            KAFKA_BOOTSTRAP_SERVERS,
            GROUP_ID,
            self.handle_event,
            retry_policy=NOTIFICATION_RETRY_POLICY,
        )

    async def close(self):
        self.logger.info("Closing Kafka")
        await KafkaConsumer.close()
        await KafkaProducer.close()
