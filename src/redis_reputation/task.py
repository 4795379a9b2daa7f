# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Message task types.

This module provides a plain implementation of TaskProtocol for hosts that
do not have their own message context, and for tests.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class EmailAddress:
    """A parsed email address."""

    addr: str
    user: str
    domain: str

    @classmethod
    def parse(cls, addr: str) -> "EmailAddress":
        """Split ``user@domain``; an address without ``@`` has an empty domain."""
        addr = addr.strip().strip("<>")
        user, sep, domain = addr.rpartition("@")
        if not sep:
            return cls(addr=addr, user=addr, domain="")
        return cls(addr=addr, user=user, domain=domain.lower())


@dataclass
class SymbolResult:
    """Score and options recorded for a symbol on a task."""

    score: float
    description: str | None = None


@dataclass
class MessageTask:
    """
    Context of one message being evaluated.

    Attributes:
        loop: Event loop that drives the task's requests
        task_id: Identifier used as log prefix
        principal_recipient: Main envelope recipient
        ip: Sending IP address as string
        smtp_from: Envelope sender
        mime_from: Header sender
        helo: HELO/EHLO name
        user: Authenticated user, if any
        local_ip: Whether the sending IP is local
        action: Action chosen for the message (used when learning)
        features: Pre-extracted features (see selectors)
    """

    loop: asyncio.AbstractEventLoop
    task_id: str = field(default_factory=lambda: uuid.uuid4().hex[:6])
    principal_recipient: str | None = None
    ip: str | None = None
    smtp_from: EmailAddress | None = None
    mime_from: EmailAddress | None = None
    helo: str | None = None
    user: str | None = None
    local_ip: bool = False
    action: str | None = None
    features: dict[str, Any] = field(default_factory=dict)
    results: dict[str, SymbolResult] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)

    def get_principal_recipient(self) -> str | None:
        return self.principal_recipient

    def get_ip(self) -> str | None:
        return self.ip

    def get_from(self, source: str = "smtp") -> EmailAddress | None:
        if source == "mime":
            return self.mime_from
        return self.smtp_from

    def get_helo(self) -> str | None:
        return self.helo

    def get_user(self) -> str | None:
        return self.user

    def is_local_ip(self) -> bool:
        return self.local_ip

    def get_metric_action(self) -> str | None:
        return self.action

    def insert_result(
        self, symbol: str, score: float, description: str | None = None
    ) -> None:
        self.results[symbol] = SymbolResult(score=score, description=description)

    def get_symbol(self, symbol: str) -> SymbolResult | None:
        return self.results.get(symbol)

    def adjust_result(self, symbol: str, score: float) -> None:
        """Replace the score of an already inserted symbol."""
        result = self.results.get(symbol)
        if result is not None:
            result.score = score

    def get_variable(self, name: str) -> str | None:
        return self.variables.get(name)

    def set_variable(self, name: str, value: str) -> None:
        self.variables[name] = value


__all__ = ["EmailAddress", "MessageTask", "SymbolResult"]
