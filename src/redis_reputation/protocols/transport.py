# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol for the wire-level transport that talks to store servers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

# callback(err, data); err is None on success
TransportCallback = Callable[[BaseException | None, Any], None]


@dataclass
class TransportRequest:
    """
    A single request handed to the transport.

    Attributes:
        host: Server address, ``"host:port"`` or a unix socket path
        timeout: Request timeout in seconds
        command: Command name, sent verbatim
        args: Positional command arguments
        callback: Invoked exactly once per accepted request
        password: Optional AUTH password
        db: Optional database number (as string)
        loop: Event loop the request runs on
        pipeline: Extra commands sent after ``command`` on the same connection.
            When present the callback receives the list of all replies.
    """

    host: str
    timeout: float
    command: str
    args: list[Any]
    callback: TransportCallback
    password: str | None = None
    db: str | None = None
    loop: asyncio.AbstractEventLoop | None = None
    pipeline: list[tuple[str, list[Any]]] = field(default_factory=list)

    def commands(self) -> list[tuple[str, list[Any]]]:
        """All commands of this request in send order."""
        return [(self.command, self.args), *self.pipeline]


@runtime_checkable
class TransportProtocol(Protocol):
    """
    Minimal protocol for the transport collaborator.

    ``submit`` returns immediately. When it returns ``accepted=True`` the
    request callback is invoked exactly once, later, from the event loop.
    When it returns ``accepted=False`` the callback is never invoked.
    """

    def submit(self, request: TransportRequest) -> tuple[bool, Any]:
        """Submit a request; returns ``(accepted, connection_handle)``."""
        ...
