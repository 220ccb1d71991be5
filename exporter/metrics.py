"""
Prometheus metrics for table exports
"""
from prometheus_client import Counter, Histogram

# ====================================
# EXPORT METRICS
# ====================================
rows_exported_total = Counter(
    'chsync_rows_exported_total',
    'Total number of rows written to Kafka',
    ['database', 'table']
)

batches_exported_total = Counter(
    'chsync_batches_exported_total',
    'Total number of batches written to Kafka',
    ['database', 'table']
)

export_failures_total = Counter(
    'chsync_export_failures_total',
    'Total number of export runs that stopped on an error',
    ['table', 'error_type']
)

# ====================================
# KAFKA DELIVERY METRICS
# ====================================
delivery_retries_total = Counter(
    'chsync_delivery_retries_total',
    'Batch writes retried because the topic was not ready',
    ['topic']
)

batch_delivery_duration = Histogram(
    'chsync_batch_delivery_duration_seconds',
    'Time taken to write one batch to Kafka',
    ['topic'],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, float("inf"))
)

topic_ready_wait_duration = Histogram(
    'chsync_topic_ready_wait_seconds',
    'Time spent waiting for a topic to become visible on all brokers',
    buckets=(0.1, 0.2, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf"))
)
