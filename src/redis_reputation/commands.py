# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Command key-index table.

Maps a redis command name (case-insensitive) to a rule that returns the
positions of its key arguments. Positions are 1-based: position 1 is the
first argument after the command name. Only these positions are rewritten
by key templating.

Adding a command is a table edit: pick the rule that matches its argument
layout and add it to COMMAND_KEY_RULES.
"""

import logging
from collections.abc import Callable, Sequence
from types import MappingProxyType
from typing import Any

logger = logging.getLogger(__name__)

KeyRule = Callable[[Sequence[Any]], list[int]]


def _no_keys(args: Sequence[Any]) -> list[int]:
    return []


def _first_arg(args: Sequence[Any]) -> list[int]:
    return [1]


def _all_args(args: Sequence[Any]) -> list[int]:
    return list(range(1, len(args) + 1))


def _odd_args(args: Sequence[Any]) -> list[int]:
    # MSET k1 v1 k2 v2
    return list(range(1, len(args) + 1, 2))


def _all_but_last(args: Sequence[Any]) -> list[int]:
    # BLPOP k1 k2 timeout
    return list(range(1, len(args)))


def _from_second(args: Sequence[Any]) -> list[int]:
    # BITOP op dest k1 k2, SDIFFSTORE dest k1 k2
    return list(range(2, len(args) + 1))


def _first_two(args: Sequence[Any]) -> list[int]:
    # SMOVE src dst member
    return [1, 2]


def _numkeys(args: Sequence[Any]) -> list[int]:
    # EVAL script numkeys k1 .. kn arg1 ..
    if len(args) < 2:
        return []
    try:
        numkeys = int(args[1])
    except (TypeError, ValueError):
        logger.warning(f"invalid numkeys argument {args[1]!r}")
        return []
    if numkeys < 1:
        return []
    return list(range(3, numkeys + 3))


_RULE_GROUPS: dict[KeyRule, tuple[str, ...]] = {
    _no_keys: (
        "auth", "bgrewriteaof", "bgsave", "client", "cluster", "command",
        "config", "dbsize", "debug", "discard", "echo", "exec", "flushall",
        "flushdb", "info", "keys", "lastsave", "migrate", "monitor", "multi",
        "object", "ping", "psubscribe", "pubsub", "publish", "punsubscribe",
        "quit", "randomkey", "readonly", "readwrite", "role", "save", "scan",
        "script", "select", "slaveof", "slowlog", "smembers", "subscribe",
        "swapdb", "sync", "time", "unsubscribe", "unwatch", "wait",
    ),
    _first_arg: (
        "append", "bitcount", "bitfield", "bitpos", "decr", "decrby", "dump",
        "expire", "expireat", "geoadd", "geodist", "geohash", "geopos",
        "georadius", "georadiusbymember", "get", "getbit", "getrange",
        "getset", "hdel", "hexists", "hget", "hgetall", "hincrby",
        "hincrbyfloat", "hkeys", "hlen", "hmget", "hscan", "hset", "hsetnx",
        "hstrlen", "hvals", "incr", "incrby", "incrbyfloat", "lindex",
        "linsert", "llen", "lpop", "lpush", "lpushx", "lrange", "lrem",
        "lset", "ltrim", "move", "persist", "pexpire", "pexpireat", "pfadd",
        "pfcount", "psetex", "pttl", "restore", "rpop", "rpush", "rpushx",
        "sadd", "scard", "set", "setbit", "setex", "setnx", "sismember",
        "sort", "spop", "srandmember", "srem", "sscan", "strlen", "ttl",
        "type", "zadd", "zcard", "zcount", "zincrby", "zlexcount", "zrange",
        "zrangebylex", "zrank", "zrem", "zrembylex", "zrembyrank",
        "zrembyscore", "zrevrange", "zrevrangebyscore", "zrevrank", "zscan",
        "zscore",
    ),
    _all_args: (
        "del", "exists", "mget", "pfmerge", "rename", "renamenx",
        "rpoplpush", "sdiff", "sinterstore", "sunion", "sunionstore",
        "touch", "unlink", "watch",
    ),
    _odd_args: ("mset", "msetnx"),
    _all_but_last: ("blpop", "brpop", "brpoplpush"),
    _from_second: ("bitop", "sdiffstore"),
    _first_two: ("smove",),
    _numkeys: ("eval", "evalsha", "zinterstore", "zunionstore"),
}

COMMAND_KEY_RULES: MappingProxyType[str, KeyRule] = MappingProxyType(
    {command: rule for rule, commands in _RULE_GROUPS.items() for command in commands}
)


def key_indexes(command: str, args: Sequence[Any]) -> list[int]:
    """
    Return the 1-based positions of the key arguments of ``command``.

    Positions never exceed ``len(args)``. An unknown command yields an empty
    list and a warning.
    """
    name = command.lower()
    rule = COMMAND_KEY_RULES.get(name)
    if rule is None:
        logger.warning(f"Don't know how to extract keys for {name} Redis command")
        return []
    return [i for i in rule(args) if 1 <= i <= len(args)]


__all__ = ["COMMAND_KEY_RULES", "KeyRule", "key_indexes"]
