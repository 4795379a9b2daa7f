# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token backends for reputation lookups.

Available backends:
- TokenBackend: Abstract base class defining the backend interface
- RedisTokenBackend: Redis hashes, readable and writable
- DnsTokenBackend: TXT records under a list zone, read-only

Supporting types:
- TokenValues: Mapping of counter name to value
- gen_token_key: Token to storage key mapping (hashing, truncation)
"""

from redis_reputation.backends.base import (
    DEFAULT_EXPIRY,
    GetTokenCallback,
    SetTokenCallback,
    TokenBackend,
    TokenBackendOptions,
    TokenValues,
    gen_token_key,
    parse_numeric_pairs,
)
from redis_reputation.backends.dns import (
    DnsTokenBackend,
    DnsTokenBackendOptions,
    parse_dns_token,
)
from redis_reputation.backends.redis import (
    RedisTokenBackend,
    RedisTokenBackendOptions,
)

__all__ = [
    "DEFAULT_EXPIRY",
    "DnsTokenBackend",
    "DnsTokenBackendOptions",
    "GetTokenCallback",
    "RedisTokenBackend",
    "RedisTokenBackendOptions",
    "SetTokenCallback",
    "TokenBackend",
    "TokenBackendOptions",
    "TokenValues",
    "gen_token_key",
    "parse_dns_token",
    "parse_numeric_pairs",
]
