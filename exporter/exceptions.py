"""
Exception hierarchy for table exports.

Every failure raised by the export engine derives from ExportError so callers
(management commands, Celery tasks, the multi-table orchestrator) can decide
whether to abort or to record the failure and move on.
"""


class ExportError(Exception):
    """Base exception for export errors."""
    pass


class ConfigError(ExportError):
    """Missing or invalid export parameter. Raised before anything runs."""
    pass


class ConnectivityError(ExportError):
    """Database or Kafka cluster could not be reached."""
    pass


class BrokersUnreachableError(ConnectivityError):
    """None of the configured Kafka brokers responded."""

    def __init__(self, brokers, message=None):
        self.brokers = list(brokers)
        super().__init__(message or f"Kafka brokers unreachable: {','.join(self.brokers)}")


class QueryError(ExportError):
    """ClickHouse rejected a query. The offending SQL is kept on the error."""

    def __init__(self, message, query=None):
        self.query = query
        super().__init__(message)


class DeliveryError(ExportError):
    """A batch could not be written to Kafka."""
    pass


class TopicNotReadyError(DeliveryError):
    """Destination topic is not (yet) visible from every broker."""

    def __init__(self, topic, message=None):
        self.topic = topic
        super().__init__(message or f"Topic not ready: {topic}")


class TopicOperationError(ExportError):
    """Topic creation or deletion failed."""
    pass


class StalledCursorError(ExportError):
    """A cursor window returned rows without moving the cursor forward."""

    def __init__(self, column, value):
        self.column = column
        self.value = value
        super().__init__(f"Cursor {column} did not advance past {value!r}")
