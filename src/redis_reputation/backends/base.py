# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Token Backend for Redis Reputation

This module provides the TokenBackend abstract class that defines the common
interface for reputation token storage.

A token is a named counter bucket, e.g. ``{"h": 12.0, "s": 3.0, "p": 1.0}``
for ham, spam and probable-spam hits. Backends fetch tokens by a string key
and report them through a continuation:

    get_token(task, rule, token, callback)
        callback(err, key, values) - values is None on error, possibly empty
        when the key holds no counters

    set_token(task, rule, token, values, callback)
        callback(err, key) - writable backends only

Hashed keys use RFC 4648 base32 (lowercase, unpadded) over blake2b by
default. Deployments that wrote hashed keys with a different base32
alphabet will not find their existing counters under these keys.
"""

import abc
import asyncio
import base64
import hashlib
import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..exceptions import ConfigurationError, ReputationError
from ..protocols.task import TaskProtocol

if TYPE_CHECKING:
    from ..rules import ReputationRule

logger = logging.getLogger(__name__)

TokenValues = dict[str, float]
GetTokenCallback = Callable[[BaseException | None, str, TokenValues | None], None]
SetTokenCallback = Callable[[BaseException | None, str], None]

DEFAULT_EXPIRY = 864000  # 10 days


class TokenBackendOptions(BaseModel):
    """
    Options common to every backend.

    Attributes:
        hashed: Hash the token before using it as a key
        hash_alg: Hash algorithm, ``blake2`` or any hashlib algorithm name
        hash_encoding: ``base32``, ``hex`` or ``base64``
        hashlen: Truncate the (encoded) key to this many characters
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    hashed: bool = False
    hash_alg: str = "blake2"
    hash_encoding: Literal["base32", "hex", "base64"] = "base32"
    hashlen: int | None = Field(default=None, ge=1)

    @field_validator("hash_alg")
    @classmethod
    def _check_hash_alg(cls, v: str) -> str:
        if v == "blake2":
            return v
        try:
            digest_size = hashlib.new(v).digest_size
        except ValueError as e:
            raise ValueError(f"unsupported hash algorithm: {v}") from e
        # shake_* have no fixed digest length
        if digest_size == 0:
            raise ValueError(f"variable-length hash algorithm not supported: {v}")
        return v


def _digest(alg: str, data: bytes) -> bytes:
    if alg == "blake2":
        return hashlib.blake2b(data).digest()
    try:
        return hashlib.new(alg, data).digest()
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"unsupported hash algorithm: {alg}") from e


def gen_token_key(token: str, options: TokenBackendOptions) -> str:
    """Map a logical token to its storage key (optional hash and truncation)."""
    key = token
    if options.hashed:
        digest = _digest(options.hash_alg, token.encode())
        if options.hash_encoding == "hex":
            key = digest.hex()
        elif options.hash_encoding == "base64":
            key = base64.b64encode(digest).decode()
        else:
            key = base64.b32encode(digest).decode().rstrip("=").lower()

    if options.hashlen:
        key = key[: options.hashlen]
    return key


class TokenBackend(abc.ABC):
    """
    An abstract base class for reputation token backends.

    Subclasses implement get_token and, when they can store data, set_token
    with ``writable = True``.
    """

    name: ClassVar[str] = "base"
    writable: ClassVar[bool] = False

    def __init__(self, options: TokenBackendOptions):
        self.options = options

    def token_key(self, token: str) -> str:
        return gen_token_key(token, self.options)

    @abc.abstractmethod
    def get_token(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        token: str,
        callback: GetTokenCallback,
    ) -> None:
        """
        Fetch the counters of ``token``.

        The callback is invoked exactly once, possibly synchronously when the
        lookup cannot be started.
        """
        pass

    def set_token(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        token: str,
        values: Mapping[str, float],
        callback: SetTokenCallback | None = None,
    ) -> None:
        """Add ``values`` to the counters of ``token``."""
        raise NotImplementedError(f"{self.name} backend is read-only")

    async def get_token_async(
        self, task: TaskProtocol, rule: "ReputationRule", token: str
    ) -> TokenValues:
        """
        Fetch the counters of ``token`` and wait for them.

        Raises:
            ReputationError or redis.exceptions.RedisError on lookup failure
        """
        future: asyncio.Future[TokenValues] = task.loop.create_future()

        def _on_token(err: BaseException | None, key: str, values: Any) -> None:
            if future.done():
                return
            if err is not None:
                future.set_exception(err)
            elif values is None:
                future.set_exception(ReputationError(f"no response for {key}"))
            else:
                future.set_result(values)

        self.get_token(task, rule, token, _on_token)
        return await future


def parse_numeric_pairs(pairs: Any) -> TokenValues:
    """
    Convert a field/value reply to counters, skipping non-numeric values.

    Accepts a mapping or a flat ``[field, value, field, value, ...]`` list.
    """
    if isinstance(pairs, Mapping):
        items = list(pairs.items())
    else:
        items = list(zip(pairs[::2], pairs[1::2]))

    values: TokenValues = {}
    for name, raw in items:
        if isinstance(name, bytes):
            name = name.decode()
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            values[str(name)] = float(raw)
        except (TypeError, ValueError):
            continue
    return values


__all__ = [
    "DEFAULT_EXPIRY",
    "GetTokenCallback",
    "SetTokenCallback",
    "TokenBackend",
    "TokenBackendOptions",
    "TokenValues",
    "gen_token_key",
    "parse_numeric_pairs",
]
