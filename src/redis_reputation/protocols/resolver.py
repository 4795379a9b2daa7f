# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for the name-resolution collaborator used by the DNS backend."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

# callback(err, records); a missing name is signalled with NameNotFoundError
ResolverCallback = Callable[[BaseException | None, list[str] | None], None]


@runtime_checkable
class ResolverProtocol(Protocol):
    """Asynchronous TXT lookups. The callback runs exactly once."""

    def resolve_txt(self, name: str, callback: ResolverCallback) -> bool:
        """Start a lookup; returns False if it could not be started."""
        ...
