"""
Kafka producer helpers for table exports.

- Row -> message encoding (JSONEachRow compatible value, raw key)
- KafkaBatchWriter: blocking whole-batch write on top of confluent-kafka
- deliver_batch: retry policy for batches sent before the topic is visible
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from confluent_kafka import KafkaError, KafkaException, Producer
from django.conf import settings

from exporter.exceptions import DeliveryError, TopicNotReadyError
from exporter.logging_utils import log_delivery_retry
from exporter.metrics import batch_delivery_duration, delivery_retries_total
from exporter.utils.sql_utils import TIMESTAMP_FORMAT

logger = logging.getLogger(__name__)

# Broker or client says the topic does not exist (yet)
NOT_READY_ERROR_CODES = frozenset({
    KafkaError.UNKNOWN_TOPIC_OR_PART,
    KafkaError._UNKNOWN_TOPIC,
    KafkaError._UNKNOWN_PARTITION,
    KafkaError.LEADER_NOT_AVAILABLE,
})

RETRY_BACKOFF_SECONDS = 0.2
RETRY_READY_TIMEOUT = 5.0


class KafkaMessage(NamedTuple):
    key: Optional[bytes]
    value: bytes


def render_value(value: Any) -> Any:
    """Bytes become text, timestamps become 'YYYY-MM-DD HH:MM:SS'."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode('utf-8', errors='replace')
    if isinstance(value, datetime):
        return value.strftime(TIMESTAMP_FORMAT)
    return value


def message_key(value: Any) -> Optional[bytes]:
    """Raw key bytes for a key column value."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value).encode('utf-8')


def encode_row(row: Dict[str, Any]) -> bytes:
    """JSON-encode one row mapping, preserving column order."""
    payload = {name: render_value(value) for name, value in row.items()}
    # date, Decimal, UUID and friends fall back to their text form
    return json.dumps(payload, default=str, ensure_ascii=False).encode('utf-8')


def build_message(row: Dict[str, Any], key: Any = None) -> KafkaMessage:
    return KafkaMessage(key=message_key(key), value=encode_row(row))


def classify_kafka_error(error: KafkaError, topic: str) -> DeliveryError:
    """Map a confluent-kafka error to TopicNotReadyError or DeliveryError."""
    if error.code() in NOT_READY_ERROR_CODES:
        return TopicNotReadyError(topic, f"Topic not ready: {topic} ({error.str()})")
    return DeliveryError(f"Failed to write to {topic}: {error.str()}")


class KafkaBatchWriter:
    """
    Writes one batch at a time and blocks until every message is acknowledged.

    Messages are keyed; librdkafka's murmur2 partitioner hashes the key so all
    rows with the same key land on the same partition in order.
    """

    def __init__(
        self,
        brokers: List[str],
        topic: str,
        batch_size: int = 10000,
        producer: Optional[Producer] = None,
        flush_timeout: Optional[float] = None,
    ):
        kafka_config = settings.KAFKA_CONFIG
        self.topic = topic
        self.flush_timeout = flush_timeout or kafka_config.get('FLUSH_TIMEOUT', 60.0)

        self.producer_config = {
            'bootstrap.servers': ','.join(brokers),
            'client.id': kafka_config.get('CLIENT_ID', 'chsync-exporter'),
            'acks': 'all',
            'linger.ms': kafka_config.get('LINGER_MS', 50),
            'batch.num.messages': max(1, min(batch_size, 1000000)),
            'message.timeout.ms': kafka_config.get('MESSAGE_TIMEOUT_MS', 30000),
            'partitioner': 'murmur2_random',
        }

        if producer is not None:
            self.producer = producer
        else:
            try:
                self.producer = Producer(self.producer_config)
                logger.info(f"Kafka producer initialized for topic {topic}")
            except KafkaException as e:
                raise DeliveryError(f"Failed to initialize Kafka producer: {e}") from e

    def write(self, messages: List[KafkaMessage]) -> None:
        """
        Produce every message and wait for all delivery reports.

        Raises:
            TopicNotReadyError: If the topic is unknown to the cluster
            DeliveryError: For any other delivery failure
        """
        errors = []

        def on_delivery(err, msg):
            if err is not None:
                errors.append(err)

        for message in messages:
            while True:
                try:
                    self.producer.produce(
                        self.topic,
                        key=message.key,
                        value=message.value,
                        on_delivery=on_delivery,
                    )
                    break
                except BufferError:
                    # Local queue full, serve delivery reports and try again
                    self.producer.poll(0.5)
                except KafkaException as e:
                    raise classify_kafka_error(e.args[0], self.topic) from e

        remaining = self.producer.flush(self.flush_timeout)

        if errors:
            logger.error(f"{len(errors)}/{len(messages)} messages failed for {self.topic}: {errors[0].str()}")
            raise classify_kafka_error(errors[0], self.topic)
        if remaining:
            raise DeliveryError(f"{remaining} messages not delivered to {self.topic} within {self.flush_timeout}s")

    def close(self) -> None:
        remaining = self.producer.flush(self.flush_timeout)
        if remaining:
            logger.warning(f"{remaining} messages still queued for {self.topic} on close")


def deliver_batch(
    writer,
    topic_manager,
    topic: str,
    messages: List[KafkaMessage],
    max_retries: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Write a batch, retrying only while the topic is not ready.

    Makes up to max_retries + 1 attempts. After each TopicNotReadyError the
    topic readiness is re-checked and the next attempt waits
    200ms * attempt. Any other error propagates immediately.

    Returns:
        Number of attempts used

    Raises:
        TopicNotReadyError: If the last attempt still found no topic
        DeliveryError: On any other write failure
    """
    attempt = 0
    while True:
        attempt += 1
        started = time.time()
        try:
            writer.write(messages)
            batch_delivery_duration.labels(topic=topic).observe(time.time() - started)
            return attempt
        except TopicNotReadyError as e:
            if attempt > max_retries:
                logger.error(f"Giving up on {topic} after {attempt} attempts")
                raise

            log_delivery_retry(topic, attempt, max_retries, e)
            delivery_retries_total.labels(topic=topic).inc()

            try:
                topic_manager.wait_ready(topic, timeout=RETRY_READY_TIMEOUT)
            except TopicNotReadyError as wait_error:
                logger.warning(f"{wait_error}, retrying anyway")

            sleep(RETRY_BACKOFF_SECONDS * attempt)
