# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Upstream selection from a read/write replica-set pair."""

from .config import RedisParams
from .protocols.upstream import HealthTrackerProtocol


def select_upstream(
    params: RedisParams, key: str | None, is_write: bool
) -> HealthTrackerProtocol | None:
    """
    Pick the server for one request.

    - key present: consistent hash over the write set (writes) or read set
    - no key, write: primary of the write set
    - no key, read: round-robin over the read set

    Returns None when no member is reachable.
    """
    replica_set = params.write_servers if is_write else params.read_servers
    if key is not None:
        return replica_set.pick_by_hash(key)
    if is_write:
        return replica_set.pick_primary()
    return replica_set.pick_round_robin()


__all__ = ["select_upstream"]
