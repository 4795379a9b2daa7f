# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Observability for Redis Reputation (Prometheus counters)."""

from .metrics import (
    AGGREGATIONS_TOTAL,
    REQUESTS_TOTAL,
    SCRIPT_LOADS_TOTAL,
    SCRIPT_RELOADS_TOTAL,
    TOKEN_LOOKUPS_TOTAL,
    UPSTREAM_FAILURES_TOTAL,
    record_upstream_failure,
)

__all__ = [
    "AGGREGATIONS_TOTAL",
    "REQUESTS_TOTAL",
    "SCRIPT_LOADS_TOTAL",
    "SCRIPT_RELOADS_TOTAL",
    "TOKEN_LOOKUPS_TOTAL",
    "UPSTREAM_FAILURES_TOTAL",
    "record_upstream_failure",
]
