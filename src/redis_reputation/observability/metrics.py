# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Prometheus metrics for Redis Reputation.

Metrics are declared once at import time on the default registry.

Important Notes on Labels:
    ``address`` labels are server addresses from configuration, a bounded set.
    Never label with keys, task ids or queries.
"""

from prometheus_client import Counter

from ..protocols.upstream import HealthTrackerProtocol

REQUESTS_TOTAL = Counter(
    "redis_reputation_requests_total",
    "Requests handed to the transport, by command and outcome",
    ["command", "outcome"],
)

UPSTREAM_FAILURES_TOTAL = Counter(
    "redis_reputation_upstream_failures_total",
    "Failures reported to upstream health trackers",
    ["address"],
)

SCRIPT_LOADS_TOTAL = Counter(
    "redis_reputation_script_loads_total",
    "SCRIPT LOAD replies, by outcome",
    ["outcome"],
)

SCRIPT_RELOADS_TOTAL = Counter(
    "redis_reputation_script_reloads_total",
    "Reload cycles started after a NOSCRIPT reply",
)

TOKEN_LOOKUPS_TOTAL = Counter(
    "redis_reputation_token_lookups_total",
    "Token lookups, by backend and outcome",
    ["backend", "outcome"],
)

AGGREGATIONS_TOTAL = Counter(
    "redis_reputation_aggregations_total",
    "Aggregations finalized",
)


def record_upstream_failure(upstream: HealthTrackerProtocol) -> None:
    """Mark an upstream failed and count it."""
    upstream.mark_failure()
    UPSTREAM_FAILURES_TOTAL.labels(address=upstream.address()).inc()


__all__ = [
    "AGGREGATIONS_TOTAL",
    "REQUESTS_TOTAL",
    "SCRIPT_LOADS_TOTAL",
    "SCRIPT_RELOADS_TOTAL",
    "TOKEN_LOOKUPS_TOTAL",
    "UPSTREAM_FAILURES_TOTAL",
    "record_upstream_failure",
]
