from aiokafka import AIOKafkaConsumer, ConsumerRebalanceListener, TopicPartition
import asyncio
import logging

from common.config import consumer_retry_policy
from common.errors import MalformedEventError, TransientDependencyError, UnknownEventError
from common.kafka.kafkaProducer import KafkaProducerSingleton
from common.kafka.topics_config import dead_letter_topic
from common.retry import RetryPolicy

REDELIVERY_DELAY = 1.0


class KafkaConsumerSingleton:
    _instance = None
    _task = None
    _rebalance_lock = asyncio.Lock()
    _retry_policy: RetryPolicy = consumer_retry_policy()


    class SafeRebalanceListener(ConsumerRebalanceListener):
        def __init__(self, consumer):
            self.consumer = consumer

        async def on_partitions_revoked(self, revoked):
            logging.info(f"[REBALANCE] Revoking partitions: {revoked}")
            async with KafkaConsumerSingleton._rebalance_lock:
                pass

        async def on_partitions_assigned(self, assigned):
            logging.info(f"[REBALANCE] Assigned new partitions: {assigned}")

    @classmethod
    async def get_instance(cls, topics, bootstrap_servers, group_id, callback,
                           retry_policy: RetryPolicy | None = None):
        if cls._instance is None:
            if retry_policy is not None:
                cls._retry_policy = retry_policy
            cls._instance = AIOKafkaConsumer(
                bootstrap_servers=bootstrap_servers,
                group_id=group_id,
                enable_auto_commit=False,
                auto_offset_reset="earliest",
            )
            listener = cls.SafeRebalanceListener(cls._instance)
            cls._instance.subscribe(list(topics), listener=listener)
            await cls._instance.start()
            logging.info(f"Kafka Consumer Started on topics: {topics}")
            cls._task = asyncio.create_task(cls._consume_events(callback))
        return cls._instance

    @classmethod
    async def handle_message(cls, message, callback) -> bool:
        """Run ``callback`` on one record; returns whether its offset may be committed.

        Malformed records are dead-lettered and committed, unknown event types
        are dropped, transient failures are retried in process and, when still
        failing, left uncommitted for redelivery. Anything else is logged and
        committed so one bad record cannot block its partition.
        """
        where = f"{message.topic}[{message.partition}]@{message.offset}"
        try:
            await cls._retry_policy.call(callback, message.value)
            return True
        except MalformedEventError as e:
            logging.error(f"Malformed event at {where}: {e}. Dead-lettering")
            try:
                await KafkaProducerSingleton.send_raw(dead_letter_topic(message.topic), message.key, message.value)
            except TransientDependencyError as dlq_error:
                logging.error(f"Dead-lettering {where} failed: {dlq_error}")
                return False
            return True
        except UnknownEventError as e:
            logging.info(f"{e} at {where}. Dropped")
            return True
        except TransientDependencyError as e:
            logging.error(f"Transient failure at {where} after retries: {e}. Leaving for redelivery")
            return False
        except Exception as e:
            logging.exception(f"Error handling event at {where}: {e}")
            return True

    @classmethod
    async def _consume_events(cls, callback):
        while True:
            try:
                async for message in cls._instance:
                    async with cls._rebalance_lock:
                        if await cls.handle_message(message, callback):
                            await cls._instance.commit()
                        else:
                            await asyncio.sleep(REDELIVERY_DELAY)
                            cls._instance.seek(TopicPartition(message.topic, message.partition), message.offset)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logging.error(f"Error during event consuming: {e}")
                await asyncio.sleep(1)
                continue


    @classmethod
    async def close(cls):
        if cls._instance:
            await cls._instance.stop()
            logging.info("Kafka Consumer stopped")
            cls._instance = None
            if cls._task:
                cls._task.cancel()
                try:
                    await cls._task
                except asyncio.CancelledError:
                    logging.info("Consumer task cancelled")
