# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocols for upstream health tracking and replica-set selection."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable


@runtime_checkable
class HealthTrackerProtocol(Protocol):
    """Per-address health tracker. Return values are never consumed."""

    def mark_success(self) -> None: ...

    def mark_failure(self) -> None: ...

    def address(self) -> str: ...


@runtime_checkable
class ReplicaSetProtocol(Protocol):
    """
    A read or write replica set.

    Every ``pick_*`` method returns ``None`` when no member is reachable.
    """

    def pick_by_hash(self, key: str) -> HealthTrackerProtocol | None: ...

    def pick_primary(self) -> HealthTrackerProtocol | None: ...

    def pick_round_robin(self) -> HealthTrackerProtocol | None: ...

    def all_members(self) -> Sequence[HealthTrackerProtocol]: ...
