"""Prometheus exporter helpers."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


images_processed_total = Counter(
    "imgbatch_images_total",
    "Images handled by the batch normaliser, by outcome.",
    ["outcome"],
)

encode_attempts = Histogram(
    "imgbatch_encode_attempts",
    "JPEG encode attempts needed per image.",
    buckets=(0, 1, 2, 3, 5, 8, 12, 16, 20),
)

batches_total = Counter(
    "imgbatch_batches_total",
    "Batches processed, by final status.",
    ["status"],
)

progress_sessions = Gauge(
    "imgbatch_progress_sessions",
    "Number of currently registered progress channels.",
)
