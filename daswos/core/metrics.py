# daswos/core/metrics.py
"""Prometheus collectors (own registry, exposed at /metrics)."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry()

ledger_operations_total = Counter(
    "daswos_ledger_operations_total",
    "Wallet ledger operations by outcome",
    ["operation", "outcome"],
    registry=registry,
)

coin_movements_total = Counter(
    "daswos_coin_movements_total",
    "Coins moved between wallets",
    ["transaction_type"],
    registry=registry,
)

request_latency_seconds = Histogram(
    "daswos_http_request_latency_seconds",
    "Latency of HTTP requests in seconds",
    ["method", "status_code"],
    registry=registry,
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(registry), CONTENT_TYPE_LATEST


__all__ = [
    "registry",
    "ledger_operations_total",
    "coin_movements_total",
    "request_latency_seconds",
    "render_latest",
]
