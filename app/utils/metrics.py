"""Prometheus metrics for the indexing workers and the retrieval path"""
from prometheus_client import Counter, Histogram, Gauge
from prometheus_client import start_http_server

# Kafka consumer metrics
kafka_messages_consumed = Counter(
    'kafka_messages_consumed_total',
    'Total number of Kafka messages consumed',
    ['consumer_group', 'topic']
)

kafka_messages_processed = Counter(
    'kafka_messages_processed_total',
    'Total number of Kafka messages processed successfully',
    ['consumer_group', 'topic']
)

kafka_messages_failed = Counter(
    'kafka_messages_failed_total',
    'Total number of Kafka messages failed',
    ['consumer_group', 'topic', 'error_type']
)

kafka_message_processing_duration = Histogram(
    'kafka_message_processing_duration_seconds',
    'Time spent processing Kafka messages',
    ['consumer_group', 'topic'],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0]
)

kafka_messages_produced = Counter(
    'kafka_messages_produced_total',
    'Total number of Kafka messages produced',
    ['producer', 'topic']
)

# Indexing runs
indexing_runs_total = Counter(
    'indexing_runs_total',
    'Document indexing runs by outcome',
    ['outcome']  # indexed, failed, aborted, skipped, cancelled
)

indexing_run_duration = Histogram(
    'indexing_run_duration_seconds',
    'Wall time of a document indexing run',
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

indexing_runs_in_progress = Gauge(
    'indexing_runs_in_progress',
    'Number of indexing runs currently executing'
)

indexing_queue_depth = Gauge(
    'indexing_queue_depth',
    'Jobs waiting in the in-process indexing queue'
)

# Embedding provider
embedding_generation_total = Counter(
    'embedding_generation_total',
    'Total number of embeddings generated',
    ['status']  # success, failed
)

embedding_generation_duration = Histogram(
    'embedding_generation_duration_seconds',
    'Time spent generating embeddings',
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0]
)

# Generation provider
generation_requests_total = Counter(
    'generation_requests_total',
    'Calls to the generation provider',
    ['status']
)

# Retrieval
search_requests_total = Counter(
    'search_requests_total',
    'Semantic search requests',
    ['result']  # hit, empty
)

search_duration = Histogram(
    'search_duration_seconds',
    'Nearest-neighbor scan time',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.5]
)

answer_requests_total = Counter(
    'answer_requests_total',
    'Grounded answer requests by outcome',
    ['outcome']  # answered, declined, malformed, fallback
)


def start_metrics_server(port=8001):
    """Start Prometheus metrics server"""
    start_http_server(port)
