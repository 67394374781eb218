from common.config import KAFKA_BOOTSTRAP_SERVERS
from common.kafka.kafkaProducer import KafkaProducerSingleton as KafkaProducer


class Kafka:
    """Payment only publishes; outcomes fan out to the invoice and email topics."""

    def __init__(self, logger) -> None:
        self.logger = logger

    async def init(self):
        self.logger.info("Initializing Kafka")
        await KafkaProducer.get_instance(KAFKA_BOOTSTRAP_SERVERS)

    async def close(self):
        self.logger.info("Closing Kafka")
        await KafkaProducer.close()
