"""
Kafka Topic Management Utilities

Handles topic readiness checks, idempotent creation and deletion, and
topic inspection (partition layout, message counts) with settings from
Django configuration.
"""

import logging
import math
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition
from confluent_kafka.admin import AdminClient, NewTopic
from django.conf import settings

from exporter.config import split_brokers
from exporter.exceptions import BrokersUnreachableError, TopicNotReadyError, TopicOperationError
from exporter.metrics import topic_ready_wait_duration

logger = logging.getLogger(__name__)


def partitions_for_rows(rows: int, rows_per_partition: int) -> int:
    """
    Map an estimated row count to a partition count.

    Args:
        rows: Estimated number of rows in the source table
        rows_per_partition: Target rows per partition

    Returns:
        At least 1 partition
    """
    if rows_per_partition <= 0 or rows <= 0:
        return 1
    return max(1, int(math.ceil(rows / rows_per_partition)))


class KafkaTopicManager:
    """Manage Kafka topics with configuration from Django settings"""

    READY_POLL_INTERVAL = 0.2   # seconds between readiness polls
    DELETE_TIMEOUT = 10.0       # seconds to wait for partitions to disappear

    def __init__(
        self,
        brokers: Optional[List[str]] = None,
        request_timeout: Optional[float] = None,
        admin_factory: Optional[Callable[[str], AdminClient]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize Kafka Topic Manager

        Args:
            brokers: Broker addresses (defaults to settings)
            request_timeout: Per-request metadata timeout in seconds
            admin_factory: Builds an AdminClient for one bootstrap string
            sleep: Sleep function used between polls
            clock: Monotonic clock used for deadlines
        """
        kafka_config = settings.KAFKA_CONFIG
        self.brokers = split_brokers(brokers) or split_brokers(kafka_config['BOOTSTRAP_SERVERS'])
        self.request_timeout = request_timeout or kafka_config.get('REQUEST_TIMEOUT', 5.0)
        self.config = settings.KAFKA_TOPIC_CONFIG
        self._admin_factory = admin_factory or (lambda servers: AdminClient({'bootstrap.servers': servers}))
        self._admins: Dict[str, AdminClient] = {}
        self._sleep = sleep
        self._clock = clock

    # ==========================================
    # Metadata helpers
    # ==========================================

    def _admin(self, broker: str) -> AdminClient:
        if broker not in self._admins:
            self._admins[broker] = self._admin_factory(broker)
        return self._admins[broker]

    @staticmethod
    def _partition_count(metadata, topic: str) -> int:
        topic_metadata = metadata.topics.get(topic)
        if topic_metadata is None or topic_metadata.error is not None:
            return 0
        return len(topic_metadata.partitions)

    def _first_reachable(self, topic: Optional[str] = None) -> Tuple[str, Any]:
        """
        Return (broker, metadata) from the first broker that answers.

        Raises:
            BrokersUnreachableError: If no configured broker responds
        """
        if not self.brokers:
            raise BrokersUnreachableError([], "No Kafka brokers configured")

        for broker in self.brokers:
            try:
                metadata = self._admin(broker).list_topics(topic=topic, timeout=self.request_timeout)
                return broker, metadata
            except KafkaException as e:
                logger.warning(f"Broker {broker} unreachable: {e}")

        raise BrokersUnreachableError(self.brokers)

    def list_topics(self, prefix: Optional[str] = None) -> List[str]:
        """
        List all topics in Kafka cluster

        Args:
            prefix: Optional prefix to filter topics

        Returns:
            Sorted list of topic names
        """
        _, metadata = self._first_reachable()
        topics = sorted(metadata.topics.keys())

        if prefix:
            topics = [t for t in topics if t.startswith(prefix)]

        logger.info(f"Found {len(topics)} topics" + (f" with prefix '{prefix}'" if prefix else ""))
        return topics

    def describe_topic(self, topic_name: str) -> Dict[str, Any]:
        """
        Partition layout of a topic

        Returns:
            Dict with partitions, replication_factor, leaders and per-partition info
        """
        _, metadata = self._first_reachable(topic_name)
        topic_metadata = metadata.topics.get(topic_name)
        if topic_metadata is None or topic_metadata.error is not None:
            raise TopicOperationError(f"Topic not found: {topic_name}")

        partitions = sorted(topic_metadata.partitions.values(), key=lambda p: p.id)
        return {
            'topic': topic_name,
            'partitions': len(partitions),
            'replication_factor': max((len(p.replicas) for p in partitions), default=0),
            'leaders': sorted({p.leader for p in partitions}),
            'partition_info': [
                {'id': p.id, 'leader': p.leader, 'replicas': list(p.replicas), 'isr': list(p.isrs)}
                for p in partitions
            ],
        }

    def count_messages(self, topic_name: str) -> int:
        """
        Count messages in a topic as the sum of (high - low) watermarks.

        Uses a throwaway consumer; the admin API has no watermark call.
        """
        info = self.describe_topic(topic_name)
        consumer = Consumer({
            'bootstrap.servers': ','.join(self.brokers),
            'group.id': f'chsync_count_{uuid.uuid4().hex[:8]}',
            'enable.auto.commit': False,
        })
        try:
            total = 0
            for partition in info['partition_info']:
                low, high = consumer.get_watermark_offsets(
                    TopicPartition(topic_name, partition['id']),
                    timeout=self.request_timeout,
                )
                if high >= low:
                    total += high - low
            return total
        finally:
            consumer.close()

    # ==========================================
    # Readiness and lifecycle
    # ==========================================

    def wait_ready(self, topic_name: str, timeout: float = 10.0) -> None:
        """
        Block until every configured broker reports partitions for the topic.

        Args:
            topic_name: Name of the topic
            timeout: Seconds to wait before giving up

        Raises:
            TopicNotReadyError: If the topic is not visible everywhere in time
            BrokersUnreachableError: If no broker answered during a poll round
        """
        if not self.brokers:
            raise BrokersUnreachableError([], "No Kafka brokers configured")

        # Each AdminClient is bootstrapped on one broker but may be answered by
        # any cluster member afterwards, so per-broker visibility is approximate.
        started = self._clock()
        deadline = started + timeout
        ready = set()

        while True:
            responded = bool(ready)
            for broker in self.brokers:
                if broker in ready:
                    continue
                try:
                    metadata = self._admin(broker).list_topics(topic=topic_name, timeout=self.request_timeout)
                except KafkaException as e:
                    logger.debug(f"Broker {broker} did not answer metadata request: {e}")
                    continue
                responded = True
                if self._partition_count(metadata, topic_name) > 0:
                    ready.add(broker)

            if len(ready) == len(self.brokers):
                topic_ready_wait_duration.observe(self._clock() - started)
                logger.debug(f"Topic {topic_name} ready on {len(ready)} broker(s)")
                return

            if not responded:
                raise BrokersUnreachableError(self.brokers)

            if self._clock() >= deadline:
                raise TopicNotReadyError(
                    topic_name,
                    f"Topic not ready: {topic_name} ({len(ready)}/{len(self.brokers)} brokers)",
                )

            self._sleep(self.READY_POLL_INTERVAL)

    def ensure_topic(
        self,
        topic_name: str,
        partitions: Optional[int] = None,
        replication_factor: Optional[int] = None,
        timeout: float = 10.0,
    ) -> bool:
        """
        Create a topic unless it already has visible partitions.

        Args:
            topic_name: Name of the topic
            partitions: Partition count (defaults to settings)
            replication_factor: Replication factor (defaults to settings)
            timeout: Seconds to wait for the new topic to become ready

        Returns:
            True if the topic was created, False if it already existed
        """
        broker, metadata = self._first_reachable(topic_name)
        if self._partition_count(metadata, topic_name) > 0:
            logger.info(f"Topic already exists: {topic_name}")
            return False

        new_topic = NewTopic(
            topic_name,
            num_partitions=partitions or self.config.get('PARTITIONS', 1),
            replication_factor=replication_factor or self.config.get('REPLICATION_FACTOR', 1),
        )

        # AdminClient routes CreateTopics to the controller
        fs = self._admin(broker).create_topics([new_topic], request_timeout=self.request_timeout)
        for topic, future in fs.items():
            try:
                future.result()
                logger.info(f"✅ Created topic: {topic} ({new_topic.num_partitions} partitions)")
            except KafkaException as e:
                error = e.args[0]
                if error.code() == KafkaError.TOPIC_ALREADY_EXISTS:
                    logger.info(f"Topic already exists: {topic}")
                    continue
                raise TopicOperationError(f"Failed to create topic {topic}: {error}") from e

        self.wait_ready(topic_name, timeout=timeout)
        return True

    def delete_topic(self, topic_name: str, timeout: Optional[float] = None) -> bool:
        """
        Delete a Kafka topic and all its messages.

        WARNING: This is a destructive operation. All messages are lost permanently.

        Args:
            topic_name: Name of the topic to delete
            timeout: Seconds to wait for the partitions to disappear

        Returns:
            True if the topic was deleted, False if it did not exist
        """
        timeout = self.DELETE_TIMEOUT if timeout is None else timeout
        broker, metadata = self._first_reachable(topic_name)
        if self._partition_count(metadata, topic_name) == 0:
            logger.info(f"Topic does not exist, nothing to delete: {topic_name}")
            return False

        admin = self._admin(broker)
        fs = admin.delete_topics([topic_name], request_timeout=self.request_timeout)
        for topic, future in fs.items():
            try:
                future.result()
            except KafkaException as e:
                error = e.args[0]
                if error.code() == KafkaError.UNKNOWN_TOPIC_OR_PART:
                    logger.info(f"Topic already deleted: {topic}")
                    return False
                raise TopicOperationError(f"Failed to delete topic {topic}: {error}") from e

        deadline = self._clock() + timeout
        while True:
            metadata = admin.list_topics(topic=topic_name, timeout=self.request_timeout)
            if self._partition_count(metadata, topic_name) == 0:
                logger.info(f"✅ Deleted topic: {topic_name}")
                return True
            if self._clock() >= deadline:
                raise TopicOperationError(f"Topic not deleted: {topic_name}")
            self._sleep(self.READY_POLL_INTERVAL)
