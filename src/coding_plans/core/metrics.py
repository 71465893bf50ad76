"""Prometheus metrics for the coding-plans gateway."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# Chat requests
chat_requests_total = Counter(
    "coding_plans_chat_requests_total",
    "Total chat requests sent to vendors",
    ["vendor", "model", "status"],
)
chat_request_duration_seconds = Histogram(
    "coding_plans_chat_request_duration_seconds",
    "Chat request duration in seconds, retries included",
    ["vendor", "model"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)
chat_retries_total = Counter(
    "coding_plans_chat_retries_total",
    "Chat request retries after 429 or 5xx",
    ["status"],
)
chat_errors_total = Counter(
    "coding_plans_chat_errors_total",
    "Chat request failures by error kind",
    ["vendor", "kind"],
)

# Model lists
model_refreshes_total = Counter(
    "coding_plans_model_refreshes_total",
    "Model list refreshes by outcome",
    ["vendor", "outcome"],
)

# Commit messages
commit_messages_total = Counter(
    "coding_plans_commit_messages_total",
    "Commit message generations by vendor and outcome",
    ["vendor", "outcome"],
)
