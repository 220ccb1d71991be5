"""
Batch export loop: ClickHouse table -> Kafka topic.

One TableExporter drives one table through the pagination planner, strictly
sequentially: window N+1 is not queried before window N has been delivered
(or has exhausted its retries). Delivery is at-least-once; a batch retried
after a partial write may duplicate messages.
"""

import logging
import time
from typing import Callable, Optional, Tuple

from chsync.utils.kafka.producer import KafkaBatchWriter, build_message, deliver_batch
from chsync.utils.kafka.topic_manager import KafkaTopicManager
from exporter.config import ExportConfig
from exporter.exceptions import ConfigError, ExportError
from exporter.export.pagination import create_planner, is_set
from exporter.logging_utils import (
    EventCallback,
    export_logger,
    log_batch_exported,
    log_export_completed,
    log_export_failed,
    log_operation,
    log_query,
)
from exporter.metrics import batches_exported_total, export_failures_total, rows_exported_total
from exporter.utils.database_utils import execute_window, get_clickhouse_connection, get_columns

logger = logging.getLogger(__name__)


class TableExporter:
    """
    Exports one table to one topic.

    Usage:
        exporter = TableExporter(config, connection)
        total = exporter.run()

    In watch mode run() only returns after stop() is called (from a signal
    handler, another thread, or an event callback).
    """

    def __init__(
        self,
        config: ExportConfig,
        connection,
        writer=None,
        topic_manager=None,
        on_event: Optional[EventCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            config: Resolved export configuration
            connection: SQLAlchemy connection to ClickHouse
            writer: Batch writer (defaults to a KafkaBatchWriter for config.topic)
            topic_manager: Readiness checker (defaults to KafkaTopicManager)
            on_event: Callback receiving every structured export event
            sleep: Sleep function for throttle and poll intervals
        """
        self.config = config
        self.connection = connection
        self.writer = writer
        self.topic_manager = topic_manager
        self.on_event = on_event
        self._sleep = sleep

        self.planner = None
        self.total = 0
        self.batches = 0
        self.current_query = None
        self.should_stop = False
        self._owns_writer = writer is None

    def stop(self):
        """Ask the loop to finish after the current window."""
        logger.info(f"[{self.config.table}] Stop signal received")
        self.should_stop = True

    def _validate(self):
        if not is_set(self.config.table):
            raise ConfigError("Missing table name")
        if not is_set(self.config.topic):
            raise ConfigError(f"Missing topic for {self.config.table}")
        if not self.config.brokers:
            raise ConfigError("No Kafka brokers configured")
        if self.config.batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {self.config.batch_size}")

    def _resolve_columns(self):
        columns = [c.name for c in get_columns(self.connection, self.config.database, self.config.table)]
        if not columns:
            raise ConfigError(f"Table {self.config.database}.{self.config.table} not found or has no columns")

        key_index = None
        if is_set(self.config.key_column):
            if self.config.key_column not in columns:
                raise ConfigError(
                    f"Key column '{self.config.key_column}' not found in "
                    f"{self.config.database}.{self.config.table}"
                )
            key_index = columns.index(self.config.key_column)

        return columns, key_index

    def run(self) -> int:
        """
        Run the export until an empty window (one-shot) or stop() (watch).

        Returns:
            Number of rows delivered

        Raises:
            ExportError: Any configuration, query, connectivity or delivery failure
        """
        self._validate()
        config = self.config

        columns, key_index = self._resolve_columns()
        self.planner = create_planner(
            config.database,
            config.table,
            columns,
            config.batch_size,
            order_by=config.order_by,
            cursor_column=config.cursor_column,
            cursor_start=config.cursor_start,
            cursor_end=config.cursor_end,
        )

        if self.topic_manager is None:
            self.topic_manager = KafkaTopicManager(config.brokers)
        self.topic_manager.wait_ready(config.topic, timeout=config.ready_timeout)

        if self.writer is None:
            self.writer = KafkaBatchWriter(config.brokers, config.topic, config.batch_size)

        logger.info(
            f"[{config.table}] Exporting {config.database}.{config.table} -> {config.topic} "
            f"({self.planner.mode} pagination, batch size {config.batch_size}"
            f"{', watch' if config.watch else ''})"
        )

        try:
            while not self.should_stop:
                window = self.planner.next_window()
                self.current_query = window.sql
                log_query(config.database, config.table, window.sql, on_event=self.on_event)

                rows = execute_window(self.connection, window.sql)

                if not rows:
                    if config.watch:
                        logger.debug(f"[{config.table}] No new rows, sleeping {config.poll_interval}s")
                        self._sleep(config.poll_interval)
                        continue
                    break

                self._export_rows(columns, key_index, rows)
                self._sleep(config.throttle_seconds)
        finally:
            if self._owns_writer and self.writer is not None:
                self.writer.close()

        log_export_completed(config.database, config.table, config.topic, self.total, on_event=self.on_event)
        return self.total

    def _export_rows(self, columns, key_index, rows):
        config = self.config
        started = time.time()

        batch = []
        for row in rows:
            self.planner.observe(row)
            key = row[key_index] if key_index is not None else None
            batch.append(build_message(dict(zip(columns, row)), key))

        deliver_batch(
            self.writer,
            self.topic_manager,
            config.topic,
            batch,
            max_retries=config.max_retries,
            sleep=self._sleep,
        )
        self.total += len(rows)
        self.batches += 1
        rows_exported_total.labels(database=config.database, table=config.table).inc(len(rows))
        batches_exported_total.labels(database=config.database, table=config.table).inc()

        self.planner.complete_window(len(rows))

        log_batch_exported(
            config.database,
            config.table,
            len(rows),
            on_event=self.on_event,
            duration=round(time.time() - started, 3),
            **self.planner.position
        )


def export_table(
    config: ExportConfig,
    connection=None,
    writer=None,
    topic_manager=None,
    on_event: Optional[EventCallback] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[int, Optional[ExportError]]:
    """
    Export one table to Kafka.

    Opens a ClickHouse connection from settings when none is given.

    Returns:
        Tuple[int, Optional[ExportError]]: (rows exported, error). On failure
        the count covers the batches delivered before the error.
    """
    exporter = None
    try:
        with log_operation(export_logger, 'export_table', database=config.database, table=config.table):
            if connection is None:
                with get_clickhouse_connection() as conn:
                    exporter = TableExporter(config, conn, writer, topic_manager, on_event, sleep)
                    return exporter.run(), None

            exporter = TableExporter(config, connection, writer, topic_manager, on_event, sleep)
            return exporter.run(), None

    except ExportError as e:
        total = exporter.total if exporter is not None else 0
        query = exporter.current_query if exporter is not None else None
        export_failures_total.labels(table=config.table, error_type=type(e).__name__).inc()
        log_export_failed(
            config.database, config.table, e, total,
            query=getattr(e, 'query', None) or query,
            on_event=on_event,
        )
        return total, e
