# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for the per-message execution context ("task")."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from redis_reputation.task import EmailAddress, SymbolResult


@runtime_checkable
class TaskProtocol(Protocol):
    """
    The context of one message being evaluated.

    The core library reads message metadata for key templating, reads
    pre-extracted features for reputation queries, and writes symbol results.
    Implementations must never block.
    """

    @property
    def task_id(self) -> str:
        """Identifier used to prefix log messages."""
        ...

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Event loop that drives this task's requests."""
        ...

    @property
    def features(self) -> Mapping[str, Any]:
        """Pre-extracted features (dkim, url_domains, asn, ...)."""
        ...

    def get_principal_recipient(self) -> str | None: ...

    def get_ip(self) -> str | None: ...

    def get_from(self, source: str = "smtp") -> EmailAddress | None: ...

    def get_helo(self) -> str | None: ...

    def get_user(self) -> str | None: ...

    def is_local_ip(self) -> bool: ...

    def get_metric_action(self) -> str | None: ...

    def insert_result(
        self, symbol: str, score: float, description: str | None = None
    ) -> None: ...

    def get_symbol(self, symbol: str) -> SymbolResult | None: ...

    def adjust_result(self, symbol: str, score: float) -> None: ...

    def get_variable(self, name: str) -> str | None: ...

    def set_variable(self, name: str, value: str) -> None: ...
