from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
import logging

from common.errors import TransientDependencyError
from common.events import Envelope, encode_event
from common.retry import RetryPolicy, exponential_backoff

PUBLISH_RETRY_POLICY = RetryPolicy(max_attempts=3, backoff=exponential_backoff(base=0.2, cap=2.0), name="publish")


class KafkaProducerSingleton:
    _instance = None
    _bootstrap_servers = None

    @classmethod
    async def get_instance(cls, bootstrap_servers=None):
        if cls._instance is None:
            cls._bootstrap_servers = bootstrap_servers or cls._bootstrap_servers
            cls._instance = AIOKafkaProducer(
                bootstrap_servers=cls._bootstrap_servers,
                acks="all",
                enable_idempotence=True,
            )
            await cls._instance.start()
            logging.info("Kafka Producer started")
        return cls._instance

    @classmethod
    async def send_raw(cls, topic: str, key: bytes | None, value: bytes):
        producer = await cls.get_instance()
        try:
            await producer.send_and_wait(topic, key=key, value=value)
        except KafkaError as e:
            raise TransientDependencyError(f"Kafka publish to {topic} failed: {e}") from e

    @classmethod
    async def publish(cls, event: Envelope, topics, key: str | None = None,
                      policy: RetryPolicy = PUBLISH_RETRY_POLICY):
        """Publish ``event`` to every topic of its fan-out list.

        Keyed by ``key`` (the aggregate id) so events of one aggregate stay
        ordered within a partition.
        """
        message = encode_event(event)
        encoded_key = key.encode('utf-8') if key is not None else None
        for topic in topics:
            await policy.call(cls.send_raw, topic, encoded_key, message)
        logging.info(f"Published {type(event).__name__} eventId={event.event_id} to {', '.join(topics)}")

    @classmethod
    async def close(cls):
        if cls._instance:
            await cls._instance.stop()
            logging.info("Kafka Producer stopped")
            cls._instance = None
