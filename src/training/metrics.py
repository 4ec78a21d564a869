"""Prometheus metrics for ingestion, embedding and search.

Exposed through the application's /metrics endpoint alongside the HTTP
metrics recorded by MetricsMiddleware.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ── Ingestion ───────────────────────────────────────────────────────────────

ingestion_runs_total = Counter(
    "training_ingestion_runs_total",
    "Ingestion runs by final state",
    ["state"],
)

ingestion_duration_seconds = Histogram(
    "training_ingestion_duration_seconds",
    "Wall time of one ingestion run",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

ingestion_runs_in_flight = Gauge(
    "training_ingestion_runs_in_flight",
    "Documents currently queued or being ingested",
)

# ── Embedding ───────────────────────────────────────────────────────────────

embedding_requests_total = Counter(
    "training_embedding_requests_total",
    "Embedding calls by provider and outcome",
    ["provider", "outcome"],
)

embedding_request_duration_seconds = Histogram(
    "training_embedding_request_duration_seconds",
    "Embedding call duration in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Search ──────────────────────────────────────────────────────────────────

search_requests_total = Counter(
    "training_search_requests_total",
    "Semantic searches by scope and whether anything matched",
    ["scope", "matched"],
)
