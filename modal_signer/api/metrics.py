"""Prometheus metrics for the signing bridge.

Exposes key operational metrics via a /metrics endpoint.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, generate_latest

# --- Request metrics ---
REQUEST_COUNT = Counter(
    "modal_signer_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "modal_signer_request_latency_seconds",
    "Request latency in seconds",
    ["endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# --- Pipeline metrics ---
PIPELINE_OUTCOMES = Counter(
    "modal_signer_pipeline_outcomes_total",
    "Pipeline terminal states by operation and HTTP status",
    ["operation", "status"],  # register_peer/submit_winner, 200/400/404/500
)

SIGNING_REQUESTS = Counter(
    "modal_signer_signing_requests_total",
    "Stamped sign requests forwarded to the signing relay",
    ["result"],  # success, rejected, timeout, network_error, malformed
)

SIGNING_LATENCY = Histogram(
    "modal_signer_signing_latency_seconds",
    "Signing relay round-trip time",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

RELAY_CALLS = Counter(
    "modal_signer_relay_calls_total",
    "JSON-RPC calls to the smart-account relay",
    ["method", "result"],  # success, rpc_error, timeout, network_error, transport_error, malformed
)

RELAY_LATENCY = Histogram(
    "modal_signer_relay_latency_seconds",
    "Relay JSON-RPC round-trip time",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def metrics_response() -> bytes:
    """Generate Prometheus-compatible metrics text."""
    return generate_latest()
