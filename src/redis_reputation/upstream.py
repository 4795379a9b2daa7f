# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Upstream servers and replica sets.

Default implementations of HealthTrackerProtocol and ReplicaSetProtocol.

Key Features:
- Error counting with a revive time, so a failing server is skipped for a while
- Rendezvous hashing for keyed selection (stable while the set is stable)
- Primary-preferring selection for writes without a key
- Round-robin selection for reads without a key
"""

import hashlib
import logging
import time
from collections.abc import Iterable, Sequence

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6379


class Upstream:
    """
    A single server with health state.

    The server is considered dead after ``max_errors`` consecutive failures
    and becomes eligible again ``revive_time`` seconds later.
    """

    def __init__(
        self,
        host: str,
        port: int | None = DEFAULT_PORT,
        weight: int = 1,
        max_errors: int = 4,
        revive_time: float = 60.0,
    ) -> None:
        self.host = host
        self.port = port
        self.weight = weight
        self.max_errors = max_errors
        self.revive_time = revive_time
        self.errors = 0
        self._dead_until: float | None = None

    @classmethod
    def parse(cls, spec: str, default_port: int = DEFAULT_PORT) -> "Upstream":
        """Parse ``host``, ``host:port``, ``[v6]:port`` or a unix socket path."""
        spec = spec.strip()
        if not spec:
            raise ConfigurationError("empty upstream definition")

        if spec.startswith("/"):
            return cls(spec, port=None)

        if spec.startswith("["):
            host, _, rest = spec[1:].partition("]")
            port_str = rest.lstrip(":")
        elif spec.count(":") == 1:
            host, _, port_str = spec.partition(":")
        else:
            host, port_str = spec, ""

        if not port_str:
            return cls(host, port=default_port)
        try:
            return cls(host, port=int(port_str))
        except ValueError as e:
            raise ConfigurationError(f"invalid port in upstream '{spec}'") from e

    def address(self) -> str:
        if self.port is None:
            return self.host
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def is_alive(self) -> bool:
        if self._dead_until is None:
            return True
        if time.monotonic() >= self._dead_until:
            logger.info(f"reviving upstream {self.address()}")
            self._dead_until = None
            self.errors = 0
            return True
        return False

    def mark_success(self) -> None:
        self.errors = 0

    def mark_failure(self) -> None:
        self.errors += 1
        if self.errors >= self.max_errors and self._dead_until is None:
            logger.warning(
                f"marking upstream {self.address()} as dead after {self.errors} errors"
            )
            self._dead_until = time.monotonic() + self.revive_time

    def __repr__(self) -> str:
        return f"Upstream({self.address()!r}, errors={self.errors})"


class UpstreamList:
    """An ordered replica set of upstreams; the first member is the primary."""

    def __init__(self, upstreams: Iterable[Upstream]) -> None:
        self._upstreams = list(upstreams)
        self._rr_index = 0

    @classmethod
    def parse(
        cls, servers: str | Sequence[str], default_port: int = DEFAULT_PORT
    ) -> "UpstreamList":
        """Create from ``"a:6379, b"`` or ``["a:6379", "b"]``."""
        if isinstance(servers, str):
            items = servers.replace(";", ",").split(",")
        else:
            items = list(servers)
        upstreams = [
            Upstream.parse(item, default_port) for item in items if item.strip()
        ]
        if not upstreams:
            raise ConfigurationError(f"no upstreams defined in {servers!r}")
        return cls(upstreams)

    def _alive(self) -> list[Upstream]:
        return [u for u in self._upstreams if u.is_alive()]

    def pick_by_hash(self, key: str) -> Upstream | None:
        alive = self._alive()
        if not alive:
            return None

        def _rank(upstream: Upstream) -> int:
            digest = hashlib.blake2b(
                f"{upstream.address()}\0{key}".encode(), digest_size=8
            ).digest()
            return int.from_bytes(digest, "big") * upstream.weight

        return max(alive, key=_rank)

    def pick_primary(self) -> Upstream | None:
        alive = self._alive()
        return alive[0] if alive else None

    def pick_round_robin(self) -> Upstream | None:
        alive = self._alive()
        if not alive:
            return None
        upstream = alive[self._rr_index % len(alive)]
        self._rr_index += 1
        return upstream

    def all_members(self) -> list[Upstream]:
        return list(self._upstreams)

    def __len__(self) -> int:
        return len(self._upstreams)

    def __repr__(self) -> str:
        return f"UpstreamList({[u.address() for u in self._upstreams]!r})"


__all__ = ["DEFAULT_PORT", "Upstream", "UpstreamList"]
