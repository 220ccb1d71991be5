"""
Logging utility functions for structured logging
"""
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

# Get loggers for different parts of the application
export_logger = logging.getLogger('exporter.export')
events_logger = logging.getLogger('exporter.events')
kafka_logger = logging.getLogger('exporter.kafka')

EventCallback = Callable[[Dict[str, Any]], None]


def log_with_context(logger, level, message, **context):
    """
    Log a message with additional context fields

    Args:
        logger: The logger instance to use
        level: Log level (INFO, ERROR, WARNING, etc.)
        message: The log message
        **context: Additional context fields (database, table, topic, etc.)

    Example:
        log_with_context(
            export_logger,
            'INFO',
            'Topic ready',
            topic='default_events',
            duration=0.4
        )
    """
    extra = {k: v for k, v in context.items() if v is not None}
    logger.log(getattr(logging, level.upper()), message, extra=extra)


@contextmanager
def log_operation(logger, operation_name, **context):
    """
    Context manager to log the start, end, and duration of an operation

    Example:
        with log_operation(export_logger, 'export_table', database='default', table='events'):
            exporter.run()
    """
    start_time = time.time()

    log_with_context(
        logger,
        'INFO',
        f'{operation_name} started',
        operation=operation_name,
        **context
    )

    try:
        yield

        duration = time.time() - start_time
        log_with_context(
            logger,
            'INFO',
            f'{operation_name} completed successfully',
            operation=operation_name,
            duration=duration,
            status='success',
            **context
        )

    except Exception as e:
        duration = time.time() - start_time
        log_with_context(
            logger,
            'ERROR',
            f'{operation_name} failed: {str(e)}',
            operation=operation_name,
            duration=duration,
            status='failed',
            error_type=type(e).__name__,
            error_message=str(e),
            **context
        )
        raise


# ====================================
# EXPORT EVENTS
# ====================================

def log_export_event(event: str, on_event: Optional[EventCallback] = None, level: str = 'INFO', **fields) -> Dict[str, Any]:
    """
    Emit one structured export event.

    The event is logged on the 'exporter.events' logger and handed to the
    optional callback (management commands print it as JSON).

    Returns:
        The event payload
    """
    payload = {'event': event, **fields}
    log_with_context(events_logger, level, event, **payload)
    if on_event is not None:
        on_event(payload)
    return payload


def log_query(database, table, query, on_event=None):
    """Log a window query before it is executed"""
    return log_export_event(
        'export_query',
        on_event=on_event,
        level='DEBUG',
        database=database,
        table=table,
        query=query,
    )


def log_batch_exported(database, table, size, on_event=None, duration=None, **position):
    """Log a delivered batch with the pagination position after it"""
    return log_export_event(
        'batch_exported',
        on_event=on_event,
        database=database,
        table=table,
        size=size,
        duration=duration,
        **position
    )


def log_export_completed(database, table, topic, total, on_event=None):
    """Log the end of an export run"""
    return log_export_event(
        'export_completed',
        on_event=on_event,
        database=database,
        table=table,
        topic=topic,
        total=total,
    )


def log_export_failed(database, table, error, total, query=None, on_event=None):
    """Log an export run that stopped on an error"""
    return log_export_event(
        'export_failed',
        on_event=on_event,
        level='ERROR',
        database=database,
        table=table,
        total=total,
        query=query,
        error_type=type(error).__name__,
        error=str(error),
    )


def log_delivery_retry(topic, attempt, max_retries, error):
    """Log a batch write retried because the topic is not ready"""
    log_with_context(
        kafka_logger,
        'WARNING',
        f'Topic {topic} not ready, retrying batch ({attempt}/{max_retries})',
        topic=topic,
        attempt=attempt,
        operation='batch_retry',
        error_message=str(error),
    )
