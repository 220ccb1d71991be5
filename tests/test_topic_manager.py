from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from confluent_kafka import KafkaError, KafkaException

from chsync.utils.kafka.topic_manager import KafkaTopicManager, partitions_for_rows
from exporter.exceptions import BrokersUnreachableError, TopicNotReadyError, TopicOperationError


def metadata(topics=None):
    """Cluster metadata with {topic: partition_count}."""
    result = {}
    for name, count in (topics or {}).items():
        partitions = {
            i: SimpleNamespace(id=i, leader=1, replicas=[1, 2], isrs=[1, 2])
            for i in range(count)
        }
        result[name] = SimpleNamespace(partitions=partitions, error=None)
    return SimpleNamespace(topics=result)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def make_manager(admins, brokers=None):
    clock = FakeClock()
    manager = KafkaTopicManager(
        brokers=brokers or list(admins),
        request_timeout=1.0,
        admin_factory=lambda broker: admins[broker],
        sleep=clock.sleep,
        clock=clock,
    )
    return manager, clock


def unreachable():
    return KafkaException(KafkaError(KafkaError._TRANSPORT))


class TestPartitionsForRows:
    def test_rounds_up(self):
        assert partitions_for_rows(2500000, 1000000) == 3
        assert partitions_for_rows(1000000, 1000000) == 1

    def test_minimum_one(self):
        assert partitions_for_rows(0, 1000000) == 1
        assert partitions_for_rows(10, 0) == 1


class TestWaitReady:
    def test_ready_on_every_broker(self):
        admins = {"b1:9092": MagicMock(), "b2:9092": MagicMock()}
        for admin in admins.values():
            admin.list_topics.return_value = metadata({"events": 3})
        manager, _ = make_manager(admins)

        manager.wait_ready("events", timeout=10)

        for admin in admins.values():
            admin.list_topics.assert_called_with(topic="events", timeout=1.0)

    def test_waits_for_lagging_broker(self):
        admins = {"b1:9092": MagicMock(), "b2:9092": MagicMock()}
        admins["b1:9092"].list_topics.return_value = metadata({"events": 1})
        admins["b2:9092"].list_topics.side_effect = [metadata(), metadata(), metadata({"events": 1})]
        manager, clock = make_manager(admins)

        manager.wait_ready("events", timeout=10)

        # ready brokers are not asked again
        assert admins["b1:9092"].list_topics.call_count == 1
        assert admins["b2:9092"].list_topics.call_count == 3
        assert clock.now == pytest.approx(0.4)

    def test_times_out(self):
        admins = {"b1:9092": MagicMock()}
        admins["b1:9092"].list_topics.return_value = metadata()
        manager, clock = make_manager(admins)

        with pytest.raises(TopicNotReadyError) as exc:
            manager.wait_ready("events", timeout=1.0)

        assert exc.value.topic == "events"
        assert clock.now >= 1.0

    def test_no_broker_answers(self):
        admins = {"b1:9092": MagicMock(), "b2:9092": MagicMock()}
        for admin in admins.values():
            admin.list_topics.side_effect = unreachable()
        manager, _ = make_manager(admins)

        with pytest.raises(BrokersUnreachableError):
            manager.wait_ready("events", timeout=5)

    def test_one_broker_down_is_not_ready(self):
        admins = {"b1:9092": MagicMock(), "b2:9092": MagicMock()}
        admins["b1:9092"].list_topics.return_value = metadata({"events": 1})
        admins["b2:9092"].list_topics.side_effect = unreachable()
        manager, _ = make_manager(admins)

        with pytest.raises(TopicNotReadyError):
            manager.wait_ready("events", timeout=0.5)


class TestTopicLifecycle:
    def test_ensure_existing_topic_is_noop(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata({"events": 2})
        manager, _ = make_manager({"b1:9092": admin})

        assert manager.ensure_topic("events", partitions=4) is False
        admin.create_topics.assert_not_called()

    def test_ensure_creates_and_waits(self):
        admin = MagicMock()
        admin.list_topics.side_effect = [metadata(), metadata({"events": 4})]
        future = MagicMock()
        future.result.return_value = None
        admin.create_topics.return_value = {"events": future}
        manager, _ = make_manager({"b1:9092": admin})

        assert manager.ensure_topic("events", partitions=4, replication_factor=1) is True

        new_topic = admin.create_topics.call_args[0][0][0]
        assert new_topic.topic == "events"
        assert new_topic.num_partitions == 4

    def test_ensure_tolerates_concurrent_create(self):
        admin = MagicMock()
        admin.list_topics.side_effect = [metadata(), metadata({"events": 1})]
        future = MagicMock()
        future.result.side_effect = KafkaException(KafkaError(KafkaError.TOPIC_ALREADY_EXISTS))
        admin.create_topics.return_value = {"events": future}
        manager, _ = make_manager({"b1:9092": admin})

        assert manager.ensure_topic("events") is True

    def test_ensure_failure(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata()
        future = MagicMock()
        future.result.side_effect = KafkaException(KafkaError(KafkaError.INVALID_REPLICATION_FACTOR))
        admin.create_topics.return_value = {"events": future}
        manager, _ = make_manager({"b1:9092": admin})

        with pytest.raises(TopicOperationError):
            manager.ensure_topic("events", replication_factor=3)

    def test_delete_absent_topic(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata()
        manager, _ = make_manager({"b1:9092": admin})

        assert manager.delete_topic("events") is False
        admin.delete_topics.assert_not_called()

    def test_delete_waits_for_partitions_to_disappear(self):
        admin = MagicMock()
        admin.list_topics.side_effect = [metadata({"events": 2}), metadata({"events": 2}), metadata()]
        future = MagicMock()
        admin.delete_topics.return_value = {"events": future}
        manager, _ = make_manager({"b1:9092": admin})

        assert manager.delete_topic("events") is True
        assert admin.list_topics.call_count == 3

    def test_delete_times_out(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata({"events": 2})
        admin.delete_topics.return_value = {"events": MagicMock()}
        manager, _ = make_manager({"b1:9092": admin})

        with pytest.raises(TopicOperationError, match="Topic not deleted"):
            manager.delete_topic("events", timeout=1.0)


class TestInspection:
    def test_list_topics_with_prefix(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata({"default_b": 1, "default_a": 1, "other": 1})
        manager, _ = make_manager({"b1:9092": admin})

        assert manager.list_topics(prefix="default_") == ["default_a", "default_b"]

    def test_falls_back_to_next_broker(self):
        admins = {"b1:9092": MagicMock(), "b2:9092": MagicMock()}
        admins["b1:9092"].list_topics.side_effect = unreachable()
        admins["b2:9092"].list_topics.return_value = metadata({"events": 1})
        manager, _ = make_manager(admins)

        assert manager.list_topics() == ["events"]

    def test_describe_topic(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata({"events": 2})
        manager, _ = make_manager({"b1:9092": admin})

        info = manager.describe_topic("events")
        assert info["partitions"] == 2
        assert info["replication_factor"] == 2
        assert info["leaders"] == [1]

    def test_describe_missing_topic(self):
        admin = MagicMock()
        admin.list_topics.return_value = metadata()
        manager, _ = make_manager({"b1:9092": admin})

        with pytest.raises(TopicOperationError):
            manager.describe_topic("events")
