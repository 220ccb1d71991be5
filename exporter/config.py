"""
Export configuration.

Every export run receives an explicit, immutable ExportConfig built from
Django settings (EXPORT_CONFIG defaults, EXPORT_TABLES per-table overrides)
and caller overrides, in that order of increasing precedence.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Union

from django.conf import settings

from exporter.exceptions import ConfigError

logger = logging.getLogger(__name__)


def split_brokers(value: Union[str, List[str], None]) -> List[str]:
    """Split a comma separated broker string (or list) into trimmed entries."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [b.strip() for b in value if b and b.strip()]


def _first_set(*values):
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, (list, tuple)) and not value:
            continue
        return value.strip() if isinstance(value, str) else value
    return None


def _first_positive(*values):
    for value in values:
        if value is not None and int(value) > 0:
            return int(value)
    return None


@dataclass(frozen=True)
class ExportConfig:
    """Everything one table export needs. Passed explicitly, never global."""
    table: str
    database: str
    brokers: List[str]
    topic: str
    batch_size: int = 10000
    order_by: str = ''
    key_column: Optional[str] = None
    cursor_column: Optional[str] = None
    cursor_start: Any = None
    cursor_end: Any = None
    watch: bool = False
    poll_interval: float = 5.0
    max_retries: int = 3
    ready_timeout: float = 10.0
    throttle_seconds: float = 0.01
    target_database: Optional[str] = None
    target_table: Optional[str] = None
    mv_own_table: bool = True
    cursor_start_from_target: bool = False
    rows_per_partition: int = 1000000
    replication_factor: int = 1

    def without_cursor(self) -> 'ExportConfig':
        """Full export: same table, offset pagination."""
        return replace(self, cursor_column=None, cursor_start=None, cursor_end=None)

    def as_dict(self) -> Dict[str, Any]:
        return {
            'table': self.table,
            'database': self.database,
            'brokers': list(self.brokers),
            'topic': self.topic,
            'batch_size': self.batch_size,
            'order_by': self.order_by,
            'key_column': self.key_column,
            'cursor_column': self.cursor_column,
            'cursor_start': self.cursor_start,
            'cursor_end': self.cursor_end,
            'watch': self.watch,
        }


def lookup_table_config(table: str) -> Optional[Dict[str, Any]]:
    """Return the EXPORT_TABLES entry for a table, if any."""
    for entry in getattr(settings, 'EXPORT_TABLES', None) or []:
        if entry.get('name') == table:
            return entry
    return None


def configured_tables() -> List[str]:
    """Names of all tables listed in EXPORT_TABLES."""
    return [entry['name'] for entry in getattr(settings, 'EXPORT_TABLES', None) or [] if entry.get('name')]


def resolve_export_config(table: str, full_export: bool = False, **overrides) -> ExportConfig:
    """
    Build the ExportConfig for one table.

    Args:
        table: Source table name (required)
        full_export: Ignore cursor settings and export with offset pagination
        **overrides: Explicit values (usually from the command line); blank
            values fall through to the table entry and then to settings

    Returns:
        ExportConfig

    Raises:
        ConfigError: If the table name is missing or a value is invalid
    """
    if not table or not table.strip():
        raise ConfigError("Missing table name")
    table = table.strip()

    defaults = getattr(settings, 'EXPORT_CONFIG', {})
    clickhouse = getattr(settings, 'CLICKHOUSE_CONFIG', {})
    kafka = getattr(settings, 'KAFKA_CONFIG', {})
    topic_config = getattr(settings, 'KAFKA_TOPIC_CONFIG', {})
    tconf = lookup_table_config(table) or {}

    database = _first_set(overrides.get('database'), tconf.get('current_database'), clickhouse.get('DATABASE'))
    if not database:
        raise ConfigError(f"No source database configured for {table}")

    brokers = split_brokers(_first_set(
        overrides.get('brokers'), tconf.get('brokers'), kafka.get('BOOTSTRAP_SERVERS'),
    ))
    if not brokers:
        raise ConfigError("No Kafka brokers configured")

    batch_size = _first_positive(overrides.get('batch_size'), tconf.get('batch_size'), defaults.get('BATCH_SIZE'))
    if not batch_size:
        raise ConfigError(f"batch_size must be positive for {table}")

    poll_interval = _first_set(overrides.get('poll_interval'), defaults.get('POLL_INTERVAL'), 5.0)
    if float(poll_interval) < 0:
        raise ConfigError(f"poll_interval must not be negative, got {poll_interval}")

    config = ExportConfig(
        table=table,
        database=database,
        brokers=brokers,
        topic=_first_set(overrides.get('topic'), tconf.get('topic')) or f"{database}_{table}",
        batch_size=batch_size,
        order_by=_first_set(overrides.get('order_by'), tconf.get('export_order_by'), defaults.get('ORDER_BY')) or '',
        key_column=_first_set(overrides.get('key_column'), tconf.get('export_key_column'), defaults.get('KEY_COLUMN')),
        cursor_column=_first_set(overrides.get('cursor_column'), tconf.get('cursor_column'), defaults.get('CURSOR_COLUMN')),
        cursor_start=_first_set(overrides.get('cursor_start'), tconf.get('cursor_start'), defaults.get('CURSOR_START')),
        cursor_end=_first_set(overrides.get('cursor_end'), tconf.get('cursor_end'), defaults.get('CURSOR_END')),
        watch=bool(_first_set(overrides.get('watch'), defaults.get('WATCH'))),
        poll_interval=float(poll_interval),
        max_retries=int(_first_set(overrides.get('max_retries'), defaults.get('MAX_RETRIES'), 3)),
        ready_timeout=float(_first_set(overrides.get('ready_timeout'), defaults.get('READY_TIMEOUT'), 10.0)),
        throttle_seconds=float(_first_set(overrides.get('throttle_seconds'), defaults.get('THROTTLE_SECONDS'), 0.01)),
        target_database=_first_set(
            overrides.get('target_database'), tconf.get('target_database'), defaults.get('TARGET_DATABASE'),
        ),
        target_table=_first_set(overrides.get('target_table'), tconf.get('target_table'), defaults.get('TARGET_TABLE')),
        mv_own_table=bool(_first_set(overrides.get('mv_own_table'), defaults.get('MV_OWN_TABLE'), True)),
        cursor_start_from_target=bool(_first_set(
            overrides.get('cursor_start_from_target'), defaults.get('CURSOR_START_FROM_TARGET'),
        )),
        rows_per_partition=_first_positive(
            overrides.get('rows_per_partition'), tconf.get('rows_per_partition'),
            topic_config.get('ROWS_PER_PARTITION'),
        ) or 1000000,
        replication_factor=_first_positive(
            overrides.get('replication_factor'), topic_config.get('REPLICATION_FACTOR'),
        ) or 1,
    )

    if full_export:
        config = config.without_cursor()

    logger.debug(f"Resolved export config for {database}.{table}: {config.as_dict()}")
    return config
