# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
DnsTokenBackend for Redis Reputation

Read-only backend that looks tokens up as TXT records under a list zone:

    <key>.<list>  TXT  "h=12;s=3;p=1"

A name that does not exist is a token without counters, not an error.
"""

import logging
from typing import TYPE_CHECKING, Literal

from ..exceptions import ConfigurationError, DispatchError, NameNotFoundError
from ..observability.metrics import TOKEN_LOOKUPS_TOTAL
from ..protocols.resolver import ResolverProtocol
from ..protocols.task import TaskProtocol
from .base import GetTokenCallback, TokenBackend, TokenBackendOptions, TokenValues

if TYPE_CHECKING:
    from ..rules import ReputationRule

logger = logging.getLogger(__name__)


class DnsTokenBackendOptions(TokenBackendOptions):
    """Options of the DNS backend; ``list`` is the zone tokens live under."""

    type: Literal["dns"] = "dns"
    list: str | None = None


def parse_dns_token(record: str) -> TokenValues:
    """Parse ``key1=num1;key2=num2`` into counters, skipping malformed pairs."""
    values: TokenValues = {}
    for item in record.strip().strip('"').split(";"):
        parts = item.split("=")
        if len(parts) != 2:
            continue
        try:
            values[parts[0].strip()] = float(parts[1])
        except ValueError:
            continue
    return values


class DnsTokenBackend(TokenBackend):
    """Looks reputation tokens up in a DNS zone."""

    name = "dns"

    def __init__(self, options: DnsTokenBackendOptions, resolver: ResolverProtocol):
        if not options.list:
            raise ConfigurationError("DNS backend has no `list` parameter defined")
        super().__init__(options)
        self.options: DnsTokenBackendOptions = options
        self._resolver = resolver

    def get_token(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        token: str,
        callback: GetTokenCallback,
    ) -> None:
        try:
            name = f"{self.token_key(token)}.{self.options.list}"
        except ConfigurationError as e:
            logger.error(f"<{task.task_id}> cannot build reputation key: {e}")
            TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
            callback(e, token, None)
            return

        def _on_resolved(err: BaseException | None, records: list[str] | None) -> None:
            if isinstance(err, NameNotFoundError):
                logger.debug(
                    f"<{task.task_id}> {name} is not listed in {self.options.list}"
                )
                TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="not_found").inc()
                callback(None, name, {})
            elif err is not None:
                logger.error(f"<{task.task_id}> error looking up {name}: {err}")
                TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
                callback(err, name, None)
            else:
                TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="success").inc()
                callback(None, name, parse_dns_token(records[0]) if records else {})

        if not self._resolver.resolve_txt(name, _on_resolved):
            logger.error(
                f"<{task.task_id}> cannot start lookup of {name} for rule {rule.symbol}"
            )
            TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
            callback(DispatchError(f"cannot resolve {name}"), name, None)


__all__ = ["DnsTokenBackend", "DnsTokenBackendOptions", "parse_dns_token"]
