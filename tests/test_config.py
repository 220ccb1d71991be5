from dataclasses import fields

import pytest
from django.test import override_settings

from exporter.config import configured_tables, resolve_export_config, split_brokers
from exporter.exceptions import ConfigError

EXPORT_DEFAULTS = {
    'BATCH_SIZE': 10000,
    'ORDER_BY': '',
    'KEY_COLUMN': '',
    'CURSOR_COLUMN': '',
    'CURSOR_START': '',
    'CURSOR_END': '',
    'WATCH': False,
    'POLL_INTERVAL': 5,
    'MAX_RETRIES': 3,
    'READY_TIMEOUT': 10,
    'THROTTLE_SECONDS': 0.01,
    'TARGET_DATABASE': '',
    'TARGET_TABLE': '',
    'MV_OWN_TABLE': True,
    'CURSOR_START_FROM_TARGET': False,
}

TABLES = [
    {
        'name': 'events',
        'current_database': 'analytics',
        'cursor_column': 'id',
        'export_key_column': 'user_id',
        'batch_size': 500,
    },
    {'name': 'users', 'topic': 'users_topic'},
]


@pytest.fixture(autouse=True)
def export_settings():
    with override_settings(
        EXPORT_CONFIG=EXPORT_DEFAULTS,
        EXPORT_TABLES=TABLES,
        CLICKHOUSE_CONFIG={'DATABASE': 'default'},
        KAFKA_CONFIG={'BOOTSTRAP_SERVERS': 'b1:9092, b2:9092'},
        KAFKA_TOPIC_CONFIG={'ROWS_PER_PARTITION': 1000, 'REPLICATION_FACTOR': 1},
    ):
        yield


def test_split_brokers():
    assert split_brokers(" a:1 , ,b:2 ") == ["a:1", "b:2"]
    assert split_brokers(["a:1", " "]) == ["a:1"]
    assert split_brokers(None) == []


def test_defaults_from_settings():
    config = resolve_export_config('orders')
    assert config.database == 'default'
    assert config.brokers == ['b1:9092', 'b2:9092']
    assert config.topic == 'default_orders'
    assert config.batch_size == 10000
    assert config.cursor_column is None
    assert config.key_column is None
    assert config.watch is False
    assert config.rows_per_partition == 1000


def test_table_entry_overrides_defaults():
    config = resolve_export_config('events')
    assert config.database == 'analytics'
    assert config.topic == 'analytics_events'
    assert config.cursor_column == 'id'
    assert config.key_column == 'user_id'
    assert config.batch_size == 500


def test_explicit_overrides_win():
    config = resolve_export_config('events', batch_size=50, topic='custom', brokers='k:9092', watch=True)
    assert config.batch_size == 50
    assert config.topic == 'custom'
    assert config.brokers == ['k:9092']
    assert config.watch is True


def test_blank_overrides_fall_through():
    config = resolve_export_config('users', topic='  ', cursor_column='')
    assert config.topic == 'users_topic'
    assert config.cursor_column is None


def test_full_export_clears_cursor():
    config = resolve_export_config('events', full_export=True, cursor_start=10)
    assert config.cursor_column is None
    assert config.cursor_start is None
    assert config.key_column == 'user_id'


def test_missing_table_name():
    with pytest.raises(ConfigError):
        resolve_export_config('  ')


def test_missing_brokers():
    with override_settings(KAFKA_CONFIG={'BOOTSTRAP_SERVERS': ''}):
        with pytest.raises(ConfigError):
            resolve_export_config('orders')


def test_negative_poll_interval():
    with pytest.raises(ConfigError):
        resolve_export_config('orders', poll_interval=-1)


def test_configured_tables():
    assert configured_tables() == ['events', 'users']


def test_config_has_only_resolved_fields():
    config = resolve_export_config('events')
    assert {f.name for f in fields(config)} == {
        'table', 'database', 'brokers', 'topic', 'batch_size', 'order_by', 'key_column',
        'cursor_column', 'cursor_start', 'cursor_end', 'watch', 'poll_interval', 'max_retries',
        'ready_timeout', 'throttle_seconds', 'target_database', 'target_table', 'mv_own_table',
        'cursor_start_from_target', 'rows_per_partition', 'replication_factor',
    }
