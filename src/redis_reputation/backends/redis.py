# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisTokenBackend for Redis Reputation

Tokens are stored as redis hashes, one field per counter:

    HGETALL <key>                 -> {"h": "12", "s": "3", "last": "1700000000"}
    HINCRBYFLOAT <key> <f> <n>    for every learned counter
    HSET <key> last <unix time>
    EXPIRE <key> <expiry>

Reads are routed by key; writes go to the primary of the write set.
"""

import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from ..config import RedisParams
from ..dispatcher import RedisDispatcher
from ..exceptions import ConfigurationError, DecodeError, DispatchError
from ..observability.metrics import TOKEN_LOOKUPS_TOTAL
from ..protocols.task import TaskProtocol
from .base import (
    DEFAULT_EXPIRY,
    GetTokenCallback,
    SetTokenCallback,
    TokenBackend,
    TokenBackendOptions,
    parse_numeric_pairs,
)

if TYPE_CHECKING:
    from ..rules import ReputationRule

logger = logging.getLogger(__name__)


class RedisTokenBackendOptions(TokenBackendOptions):
    """Options of the redis backend; ``expiry`` is the key TTL in seconds."""

    type: Literal["redis"] = "redis"
    expiry: int = DEFAULT_EXPIRY


class RedisTokenBackend(TokenBackend):
    """Reads and learns reputation tokens stored in redis hashes."""

    name = "redis"
    writable = True

    def __init__(
        self,
        options: RedisTokenBackendOptions,
        dispatcher: RedisDispatcher,
        params: RedisParams,
    ):
        super().__init__(options)
        self.options: RedisTokenBackendOptions = options
        self._dispatcher = dispatcher
        self._params = params

    def token_key(self, token: str) -> str:
        key = super().token_key(token)
        if self._params.prefix:
            return f"{self._params.prefix}{key}"
        return key

    def get_token(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        token: str,
        callback: GetTokenCallback,
    ) -> None:
        try:
            key = self.token_key(token)
        except ConfigurationError as e:
            logger.error(f"<{task.task_id}> cannot build reputation key: {e}")
            TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
            callback(e, token, None)
            return

        def _on_reply(err: BaseException | None, data: Any) -> None:
            if err is not None:
                logger.error(
                    f"<{task.task_id}> got error while getting reputation keys "
                    f"{key}: {err}"
                )
                TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
                callback(err, key, None)
            elif isinstance(data, (Mapping, list, tuple)):
                TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="success").inc()
                callback(None, key, parse_numeric_pairs(data))
            else:
                logger.error(
                    f"<{task.task_id}> invalid type while getting reputation keys "
                    f"{key}: {type(data).__name__}"
                )
                TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
                callback(DecodeError("invalid type", key=key), key, None)

        result = self._dispatcher.make_request(
            task, self._params, key, False, _on_reply, "HGETALL", [key]
        )
        if not result:
            logger.error(
                f"<{task.task_id}> cannot make redis request to check results "
                f"for rule {rule.symbol}"
            )
            TOKEN_LOOKUPS_TOTAL.labels(backend=self.name, outcome="error").inc()
            callback(DispatchError(f"cannot make redis request for {key}"), key, None)

    def set_token(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        token: str,
        values: Mapping[str, float],
        callback: SetTokenCallback | None = None,
    ) -> None:
        try:
            key = self.token_key(token)
        except ConfigurationError as e:
            logger.error(f"<{task.task_id}> cannot build reputation key: {e}")
            if callback is not None:
                callback(e, token)
            return

        # Increments are additive; EXPIRE goes last so new keys get a TTL too
        commands: list[tuple[str, list[str]]] = [
            ("HINCRBYFLOAT", [key, str(name), str(amount)])
            for name, amount in values.items()
        ]
        commands.append(("HSET", [key, "last", str(int(time.time()))]))
        commands.append(("EXPIRE", [key, str(self.options.expiry)]))
        (command, args), *pipeline = commands

        def _on_reply(err: BaseException | None, data: Any) -> None:
            if err is not None:
                logger.error(
                    f"<{task.task_id}> got error while setting reputation keys "
                    f"{key}: {err}"
                )
            if callback is not None:
                callback(err, key)

        result = self._dispatcher.make_request(
            task, self._params, None, True, _on_reply, command, args, pipeline=pipeline
        )
        if not result:
            logger.error(f"<{task.task_id}> got error while connecting to redis")
            if callback is not None:
                callback(DispatchError(f"cannot make redis request for {key}"), key)


__all__ = ["RedisTokenBackend", "RedisTokenBackendOptions"]
