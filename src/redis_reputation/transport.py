# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisTransport for Redis Reputation

This module provides the default TransportProtocol implementation on top of
redis-py's asyncio client.

Key Features:
- One client per (event loop, host, db, password), created on first use
- Non-blocking submit: the command runs as a task on the request's loop
- Per-request timeout via asyncio.wait_for
- Pipelined extra commands on the same connection
- The request callback runs exactly once per accepted request
"""

import asyncio
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError, TimeoutError

from .protocols.transport import TransportRequest
from .upstream import DEFAULT_PORT

logger = logging.getLogger(__name__)

_ClientKey = tuple[int, str, str | None, str | None]


def _split_host(host: str) -> tuple[str, int]:
    if host.startswith("["):
        name, _, rest = host[1:].partition("]")
        port = rest.lstrip(":")
    elif host.count(":") == 1:
        name, _, port = host.partition(":")
    else:
        name, port = host, ""
    return name, int(port) if port else DEFAULT_PORT


class RedisTransport:
    """
    Transport that executes requests with ``redis.asyncio.Redis``.

    Replies are decoded to ``str`` by default. Server error replies and
    connection problems are delivered to the callback as redis-py exceptions.
    """

    def __init__(self, max_connections: int = 10, decode_responses: bool = True):
        """
        Initialize the transport.

        Args:
            max_connections: Maximum connections per client pool
            decode_responses: Decode replies to str (required by token parsing)
        """
        self.max_connections = max_connections
        self.decode_responses = decode_responses
        self._clients: dict[_ClientKey, Redis] = {}

    def _client_for(
        self, request: TransportRequest, loop: asyncio.AbstractEventLoop
    ) -> Redis:
        key = (id(loop), request.host, request.db, request.password)
        client = self._clients.get(key)
        if client is not None:
            return client

        db = int(request.db) if request.db else 0
        if request.host.startswith("/"):
            client = Redis(
                unix_socket_path=request.host,
                db=db,
                password=request.password,
                decode_responses=self.decode_responses,
                max_connections=self.max_connections,
            )
        else:
            host, port = _split_host(request.host)
            client = Redis(
                host=host,
                port=port,
                db=db,
                password=request.password,
                decode_responses=self.decode_responses,
                max_connections=self.max_connections,
            )
        self._clients[key] = client
        return client

    def submit(self, request: TransportRequest) -> tuple[bool, Any]:
        loop = request.loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.error(f"no event loop to send request to {request.host}")
                return False, None

        if loop.is_closed():
            logger.error(f"event loop is closed, cannot send request to {request.host}")
            return False, None

        try:
            client = self._client_for(request, loop)
        except ValueError as e:
            logger.error(f"cannot create redis client for {request.host}: {e}")
            return False, None

        task = loop.create_task(self._execute(client, request))
        return True, task

    async def _send(self, client: Redis, request: TransportRequest) -> Any:
        if not request.pipeline:
            return await client.execute_command(request.command, *request.args)

        pipe = client.pipeline(transaction=False)
        for command, args in request.commands():
            pipe.execute_command(command, *args)
        return await pipe.execute(raise_on_error=True)

    async def _execute(self, client: Redis, request: TransportRequest) -> None:
        err: BaseException | None = None
        data: Any = None
        try:
            data = await asyncio.wait_for(
                self._send(client, request), timeout=request.timeout
            )
        except asyncio.TimeoutError:
            err = TimeoutError(f"timeout while talking to {request.host}")
        except RedisError as e:
            err = e
        except Exception as e:
            logger.error(f"unexpected error talking to {request.host}: {e!r}")
            err = e
        request.callback(err, data)

    async def aclose(self, timeout: float = 2.5) -> None:
        """Close every client created by this transport."""
        clients, self._clients = self._clients, {}
        for (_, host, _, _), client in clients.items():
            try:
                await asyncio.wait_for(client.aclose(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Connection cleanup timed out for {host}")
            except RedisError as e:
                logger.error(f"Error during connection cleanup for {host}: {e}")


__all__ = ["RedisTransport"]
