"""
Prometheus metrics for the partner-file pipeline

Counters and histograms live on a private registry so tests and embedding
applications can scrape them without touching the process-global default.
"""
import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# FILE / STAGE METRICS
# =======================

files_processed_total = Counter(
    name="partner_etl_files_processed_total",
    documentation="Files that reached a terminal pipeline state",
    labelnames=["template", "outcome"],  # outcome: Completed, Rejected
    registry=REGISTRY,
)

stage_duration_seconds = Histogram(
    name="partner_etl_stage_duration_seconds",
    documentation="Time spent in each pipeline stage",
    labelnames=["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 120.0],
    registry=REGISTRY,
)

retries_total = Counter(
    name="partner_etl_retries_total",
    documentation="Retry transitions taken after a transient failure",
    labelnames=["stage", "error_type"],
    registry=REGISTRY,
)

rejections_total = Counter(
    name="partner_etl_rejections_total",
    documentation="Files rejected, by error classification",
    labelnames=["stage", "error_type"],
    registry=REGISTRY,
)

files_in_flight = Gauge(
    name="partner_etl_files_in_flight",
    documentation="Files currently between Received and a terminal state",
    registry=REGISTRY,
)

# =======================
# DATA QUALITY METRICS
# =======================

validation_failures_total = Counter(
    name="partner_etl_validation_failures_total",
    documentation="Validation messages produced, by rule type",
    labelnames=["template", "rule_type"],
    registry=REGISTRY,
)

missing_translations_total = Counter(
    name="partner_etl_missing_translations_total",
    documentation="Missing translations recorded (after de-duplication)",
    labelnames=["client_id"],
    registry=REGISTRY,
)

# =======================
# CATALOG METRICS
# =======================

catalog_rows_written_total = Counter(
    name="partner_etl_catalog_rows_written_total",
    documentation="Document catalog rows upserted by the import executor",
    labelnames=["client_id"],
    registry=REGISTRY,
)

catalog_conflicts_total = Counter(
    name="partner_etl_catalog_conflicts_total",
    documentation="Optimistic version conflicts detected on catalog commit",
    labelnames=["client_id"],
    registry=REGISTRY,
)

staged_field_writes_total = Counter(
    name="partner_etl_staged_field_writes_total",
    documentation="Staged field writes that changed a value",
    labelnames=["writer"],  # writer: staging, rules
    registry=REGISTRY,
)

# =======================
# NOTIFICATION / BATCH METRICS
# =======================

notifications_total = Counter(
    name="partner_etl_notifications_total",
    documentation="Notification send attempts",
    labelnames=["template", "status"],  # status: sent, failed
    registry=REGISTRY,
)

batches_completed_total = Counter(
    name="partner_etl_batches_completed_total",
    documentation="Batches whose entries all reached a terminal state",
    labelnames=["outcome"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def get_metrics() -> bytes:
    """Prometheus text exposition of the pipeline registry"""
    return generate_latest(REGISTRY)


def start_metrics_server(port: int | None = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def get_sample_value(name: str, labels: dict[str, str] | None = None) -> float | None:
    """Read a single sample from the registry (tests read counters through this)"""
    return REGISTRY.get_sample_value(name, labels or {})
