# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Redis Reputation - Redis command dispatch and reputation token aggregation.

This library routes Redis commands to the right replica of a configured
server set, manages server-side Lua scripts across every server, and
aggregates reputation tokens looked up from Redis or DNS into a score.

Key Features:
    - Key extraction for the Redis command set, for hash-based routing
    - Per-message key templating ({{ip}}, {{from_domain}}, ...)
    - Upstream health reporting exactly once per request
    - Script loading on all servers, with transparent NOSCRIPT recovery
    - Concurrent token lookups joined into exactly one finalize
    - Reputation rules over DKIM, URL and IP selectors

Quick Start:
    >>> from redis_reputation import RedisDispatcher, RedisTransport
    >>> from redis_reputation import parse_redis_server
    >>>
    >>> params = parse_redis_server("reputation", {"servers": "127.0.0.1"})
    >>> dispatcher = RedisDispatcher(RedisTransport())
    >>> reply = await dispatcher.execute(params, "key", False, "GET", ["key"])

Main Exports:
    - RedisDispatcher: Command routing and dispatch
    - ScriptRegistry: Server-side script lifecycle
    - TokenAggregator: Multi-token reputation aggregation
    - RedisTokenBackend, DnsTokenBackend: Token storage backends
    - load_rules, ReputationRule: Reputation module rules
    - RedisTransport: redis-py based transport (lazy loaded)

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .aggregation import (
    AggregationRequest,
    AggregationResult,
    TokenAggregator,
    generic_reputation_calc,
)
from .backends import (
    DnsTokenBackend,
    RedisTokenBackend,
    TokenBackend,
    gen_token_key,
)
from .commands import COMMAND_KEY_RULES, key_indexes
from .config import RedisParams, RedisServerOptions, parse_redis_server
from .dispatcher import DispatchResult, RedisDispatcher
from .exceptions import (
    ConfigurationError,
    DecodeError,
    DispatchError,
    NameNotFoundError,
    ReputationError,
    RoutingError,
    ScriptNotFoundError,
    ScriptNotLoadedError,
)
from .fanin import FanIn
from .protocols import (
    ResolverProtocol,
    TaskProtocol,
    TransportProtocol,
    TransportRequest,
)
from .rules import ReputationRule, load_rules, parse_rule
from .scripts import RedisScript, ScriptCallParams, ScriptRegistry, ScriptState
from .selectors import DkimSelector, IpSelector, UrlSelector
from .task import EmailAddress, MessageTask
from .templating import KeyExpansionContext, expand_template
from .upstream import Upstream, UpstreamList

# Lazy import for the redis-py transport
if TYPE_CHECKING:
    from .transport import RedisTransport

__all__ = [
    "COMMAND_KEY_RULES",
    # Aggregation
    "AggregationRequest",
    "AggregationResult",
    # Exceptions
    "ConfigurationError",
    "DecodeError",
    "DispatchError",
    # Dispatch
    "DispatchResult",
    "DkimSelector",
    "DnsTokenBackend",
    "EmailAddress",
    "FanIn",
    "IpSelector",
    "KeyExpansionContext",
    "MessageTask",
    "NameNotFoundError",
    # Configuration
    "RedisDispatcher",
    "RedisParams",
    "RedisScript",
    "RedisServerOptions",
    "RedisTokenBackend",
    "RedisTransport",  # Lazy loaded
    # Rules
    "ReputationError",
    "ReputationRule",
    # Protocols
    "ResolverProtocol",
    "RoutingError",
    "ScriptCallParams",
    "ScriptNotFoundError",
    "ScriptNotLoadedError",
    # Scripts
    "ScriptRegistry",
    "ScriptState",
    "TaskProtocol",
    "TokenAggregator",
    # Backends
    "TokenBackend",
    "TransportProtocol",
    "TransportRequest",
    "Upstream",
    "UpstreamList",
    "UrlSelector",
    "expand_template",
    "gen_token_key",
    "generic_reputation_calc",
    "key_indexes",
    "load_rules",
    "parse_redis_server",
    "parse_rule",
]


def __getattr__(name: str) -> type:
    """Lazy import for the redis-py transport."""
    if name == "RedisTransport":
        from .transport import RedisTransport

        return RedisTransport
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
