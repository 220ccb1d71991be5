"""
Export Orchestrator - entry point for table exports.

- Preparing topics (partition sizing, optional recreate)
- Resuming cursor exports from what the target already holds
- Exporting one table, or syncing several tables one after another
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from chsync.utils.kafka.topic_manager import KafkaTopicManager, partitions_for_rows
from exporter.config import ExportConfig, configured_tables, resolve_export_config
from exporter.exceptions import ConfigError, ExportError
from exporter.export.engine import export_table
from exporter.export.pagination import is_set
from exporter.logging_utils import EventCallback, log_export_event
from exporter.utils.database_utils import count_table_rows, get_clickhouse_connection, max_column_value

logger = logging.getLogger(__name__)


def target_table_for(config: ExportConfig) -> str:
    """
    Table in the target database that receives the topic's rows.

    With mv_own_table the Kafka materialized view owns its storage and is
    named mv_from_kafka_<table>.
    """
    if config.mv_own_table:
        return f"mv_from_kafka_{config.table}"
    return config.target_table or config.table


def resume_from_target(connection, config: ExportConfig) -> ExportConfig:
    """
    Replace cursor_start with max(cursor_column) already present in the target.

    The target database defaults to the source database. Returns the config
    unchanged when there is no cursor column or the target has no rows.
    """
    if not is_set(config.cursor_column):
        logger.warning(f"[{config.table}] cursor_start_from_target needs a cursor column, ignoring")
        return config

    target_database = config.target_database if is_set(config.target_database) else config.database
    target_table = target_table_for(config)
    value = max_column_value(connection, target_database, target_table, config.cursor_column)
    if value is None:
        logger.info(f"[{config.table}] Target {target_database}.{target_table} is empty, "
                    f"keeping cursor start {config.cursor_start!r}")
        return config

    logger.info(f"[{config.table}] Resuming from {target_database}.{target_table}: "
                f"{config.cursor_column} = {value!r}")
    return replace(config, cursor_start=value)


class ExportOrchestrator:
    """
    Runs exports for one or many tables.

    Tables are exported strictly one after another; parallelism across
    tables belongs to Celery (see exporter.tasks).
    """

    def __init__(
        self,
        on_event: Optional[EventCallback] = None,
        topic_manager_factory: Optional[Callable[[List[str]], Any]] = None,
        connection_factory: Optional[Callable[[], Any]] = None,
        writer_factory: Optional[Callable[[ExportConfig], Any]] = None,
    ):
        """
        Args:
            on_event: Callback receiving every structured export event
            topic_manager_factory: Builds a topic manager for a broker list
            connection_factory: Returns a ClickHouse connection context manager
            writer_factory: Builds a batch writer for a config
        """
        self.on_event = on_event
        self._topic_manager_factory = topic_manager_factory or KafkaTopicManager
        self._connection_factory = connection_factory or get_clickhouse_connection
        self._writer_factory = writer_factory

    # ==========================================
    # Single table
    # ==========================================

    def prepare_topic(self, connection, config: ExportConfig, recreate_topic: bool = False,
                      topic_manager=None) -> Dict[str, Any]:
        """
        Create the topic sized for the table, optionally dropping it first.

        Returns:
            Dict with topic, rows, partitions, topic_created, topic_deleted
        """
        topic_manager = topic_manager or self._topic_manager_factory(config.brokers)

        rows = count_table_rows(connection, config.database, config.table)
        partitions = partitions_for_rows(rows, config.rows_per_partition)

        deleted = False
        if recreate_topic:
            logger.warning(f"[{config.table}] Recreating topic {config.topic}")
            deleted = topic_manager.delete_topic(config.topic)

        created = topic_manager.ensure_topic(
            config.topic,
            partitions=partitions,
            replication_factor=config.replication_factor,
            timeout=config.ready_timeout,
        )

        return log_export_event(
            'topic_prepared',
            on_event=self.on_event,
            database=config.database,
            table=config.table,
            topic=config.topic,
            rows=rows,
            partitions=partitions,
            topic_created=created,
            topic_deleted=deleted,
        )

    def export(self, config: ExportConfig, prepare: bool = False, prepare_only: bool = False,
               recreate_topic: bool = False) -> Dict[str, Any]:
        """
        Export one table.

        Args:
            config: Resolved export configuration
            prepare: Create/size the topic before exporting
            prepare_only: Create/size the topic and stop there
            recreate_topic: Delete the topic before preparing it

        Returns:
            Dict with table, topic, rows, success and error (if any)
        """
        result = {'table': config.table, 'topic': config.topic, 'rows': 0, 'success': False, 'error': None}
        topic_manager = self._topic_manager_factory(config.brokers)

        try:
            with self._connection_factory() as connection:
                if prepare or prepare_only or recreate_topic:
                    result['topic_info'] = self.prepare_topic(
                        connection, config, recreate_topic=recreate_topic, topic_manager=topic_manager,
                    )
                if prepare_only:
                    result['success'] = True
                    return result

                if config.cursor_start_from_target:
                    config = resume_from_target(connection, config)
                    result['cursor_start'] = config.cursor_start

                writer = self._writer_factory(config) if self._writer_factory else None
                rows, error = export_table(
                    config,
                    connection=connection,
                    writer=writer,
                    topic_manager=topic_manager,
                    on_event=self.on_event,
                )
        except ExportError as e:
            logger.error(f"❌ [{config.table}] {e}")
            result['error'] = e
            return result

        result['rows'] = rows
        result['error'] = error
        result['success'] = error is None
        return result

    # ==========================================
    # Many tables
    # ==========================================

    def sync(
        self,
        tables: Optional[List[str]] = None,
        continue_on_error: bool = False,
        prepare_only: bool = False,
        full_export: bool = False,
        recreate_topic: bool = False,
        **overrides
    ) -> Dict[str, Any]:
        """
        Prepare topics and export several tables, one after another.

        Args:
            tables: Table names (defaults to every EXPORT_TABLES entry)
            continue_on_error: Record a failed table and move on instead of stopping
            prepare_only: Only create/size topics
            full_export: Ignore cursor settings for every table
            recreate_topic: Drop and recreate each topic first
            **overrides: Passed to resolve_export_config for each table

        Returns:
            Dict with per-table results, totals and the failed table names

        Raises:
            ConfigError: If there is nothing to sync
        """
        tables = list(tables or configured_tables())
        if not tables:
            raise ConfigError("No tables to sync: pass table names or configure EXPORT_TABLES")

        logger.info("=" * 60)
        logger.info(f"SYNCING {len(tables)} TABLE(S)")
        logger.info("=" * 60)

        summary = {'tables': {}, 'total_rows': 0, 'failed': [], 'aborted': False}

        for index, table in enumerate(tables, start=1):
            logger.info(f"[{index}/{len(tables)}] {table}")
            try:
                config = resolve_export_config(table, full_export=full_export, **overrides)
            except ConfigError as e:
                result = {'table': table, 'topic': None, 'rows': 0, 'success': False, 'error': e}
            else:
                result = self.export(config, prepare=True, prepare_only=prepare_only,
                                     recreate_topic=recreate_topic)

            summary['tables'][table] = result
            summary['total_rows'] += result['rows']

            if not result['success']:
                summary['failed'].append(table)
                if not continue_on_error:
                    logger.error(f"❌ Stopping sync at {table}: {result['error']}")
                    summary['aborted'] = True
                    break
                logger.warning(f"Skipping failed table {table}: {result['error']}")
            else:
                logger.info(f"✅ {table}: {result['rows']} rows")

        log_export_event(
            'sync_completed',
            on_event=self.on_event,
            tables=len(summary['tables']),
            total=summary['total_rows'],
            failed=len(summary['failed']),
        )
        return summary
