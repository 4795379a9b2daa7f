# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request dispatcher for Redis Reputation

This module provides RedisDispatcher, which routes a command to one server of
a replica set, expands templated keys and submits the request to the
transport.

Key Features:
- Keyed (consistent hash), primary and round-robin server selection
- ``{{field}}`` key templating on key positions only
- Health reporting to the chosen server exactly once per request
- Task-bound and task-less variants sharing one code path
- Awaitable wrapper for coroutine callers
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from .commands import key_indexes
from .config import RedisParams
from .exceptions import DispatchError, RoutingError
from .observability.metrics import REQUESTS_TOTAL, record_upstream_failure
from .protocols.task import TaskProtocol
from .protocols.transport import TransportProtocol, TransportRequest
from .protocols.upstream import HealthTrackerProtocol
from .router import select_upstream
from .templating import KeyExpansionContext, TldFunc, expand_template, registered_domain

logger = logging.getLogger(__name__)

# callback(err, data); err is None on success
RequestCallback = Callable[[BaseException | None, Any], None]
Pipeline = Sequence[tuple[str, Sequence[Any]]]


@dataclass
class DispatchResult:
    """
    Outcome of handing a request to the transport.

    Truthy only when the request was accepted; the callback will then be
    invoked exactly once.
    """

    accepted: bool
    connection: Any = None
    upstream: HealthTrackerProtocol | None = None

    def __bool__(self) -> bool:
        return self.accepted


class _Completion:
    """Wraps the caller's callback with one-shot health reporting."""

    def __init__(
        self, upstream: HealthTrackerProtocol, callback: RequestCallback, label: str
    ) -> None:
        self._upstream = upstream
        self._callback = callback
        self._label = label
        self._done = False

    def reject(self) -> None:
        self._done = True

    def __call__(self, err: BaseException | None, data: Any) -> None:
        if self._done:
            logger.warning(
                f"<{self._label}> ignoring duplicate completion from "
                f"{self._upstream.address()}"
            )
            return
        self._done = True

        if err is None:
            self._upstream.mark_success()
        else:
            record_upstream_failure(self._upstream)
        self._callback(err, data)


def _expand_keys(
    command: str, args: list[Any], context: KeyExpansionContext
) -> list[Any]:
    for i in key_indexes(command, args):
        args[i - 1] = expand_template(args[i - 1], context)
    return args


class RedisDispatcher:
    """
    Routes commands to servers of a RedisParams replica-set pair.

    Example:
        dispatcher = RedisDispatcher(RedisTransport())
        dispatcher.make_request(task, params, key, False, on_reply, "HGETALL", [key])
    """

    def __init__(
        self, transport: TransportProtocol, tld_func: TldFunc = registered_domain
    ) -> None:
        self._transport = transport
        self._tld_func = tld_func

    @property
    def transport(self) -> TransportProtocol:
        return self._transport

    def make_request(
        self,
        task: TaskProtocol | None,
        params: RedisParams | None,
        key: str | None,
        is_write: bool,
        callback: RequestCallback | None,
        command: str,
        args: Sequence[Any],
        *,
        pipeline: Pipeline | None = None,
    ) -> DispatchResult:
        """
        Send a command in the context of a task.

        Args:
            task: Task whose loop runs the request and whose metadata feeds
                key templating
            params: Connection parameters
            key: Routing key, or None for primary/round-robin selection
            is_write: Select from the write set
            callback: Invoked with ``(err, data)`` once the server replied
            command: Command name
            args: Command arguments; the caller's sequence is not modified
            pipeline: Extra commands to send on the same connection

        Returns:
            DispatchResult, falsy when nothing was sent. The callback is
            never invoked for a falsy result.
        """
        if task is None or params is None or callback is None or not command:
            return DispatchResult(False)

        return self._dispatch(
            loop=task.loop,
            label=task.task_id,
            task=task,
            params=params,
            key=key,
            is_write=is_write,
            callback=callback,
            command=command,
            args=args,
            pipeline=pipeline,
        )

    def make_request_taskless(
        self,
        loop: asyncio.AbstractEventLoop | None,
        params: RedisParams | None,
        key: str | None,
        is_write: bool,
        callback: RequestCallback | None,
        command: str,
        args: Sequence[Any],
        *,
        label: str = "config",
        pipeline: Pipeline | None = None,
    ) -> DispatchResult:
        """
        Send a command outside of any task.

        Same as make_request, with an explicit loop. Templated keys expand
        with every field absent.
        """
        if loop is None or params is None or callback is None or not command:
            return DispatchResult(False)

        return self._dispatch(
            loop=loop,
            label=label,
            task=None,
            params=params,
            key=key,
            is_write=is_write,
            callback=callback,
            command=command,
            args=args,
            pipeline=pipeline,
        )

    def _dispatch(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        label: str,
        task: TaskProtocol | None,
        params: RedisParams,
        key: str | None,
        is_write: bool,
        callback: RequestCallback,
        command: str,
        args: Sequence[Any],
        pipeline: Pipeline | None,
    ) -> DispatchResult:
        metric_command = command.upper()
        upstream = select_upstream(params, key, is_write)
        if upstream is None:
            logger.error(f"<{label}> cannot select server to make redis request")
            REQUESTS_TOTAL.labels(command=metric_command, outcome="no_upstream").inc()
            return DispatchResult(False)

        cmd_args = list(args)
        extra = [(cmd, list(cmd_a)) for cmd, cmd_a in pipeline or ()]
        if params.expand_keys:
            context = KeyExpansionContext(task, self._tld_func)
            cmd_args = _expand_keys(command, cmd_args, context)
            extra = [(cmd, _expand_keys(cmd, cmd_a, context)) for cmd, cmd_a in extra]

        address = upstream.address()
        completion = _Completion(upstream, callback, label)
        request = TransportRequest(
            host=address,
            timeout=params.timeout,
            command=command,
            args=cmd_args,
            callback=completion,
            password=params.password,
            db=params.db,
            loop=loop,
            pipeline=extra,
        )

        accepted, connection = self._transport.submit(request)
        if not accepted:
            completion.reject()
            record_upstream_failure(upstream)
            logger.warning(f"<{label}> cannot make redis request to: {address}")
            REQUESTS_TOTAL.labels(command=metric_command, outcome="rejected").inc()
            return DispatchResult(False, connection, upstream)

        REQUESTS_TOTAL.labels(command=metric_command, outcome="submitted").inc()
        return DispatchResult(True, connection, upstream)

    async def execute(
        self,
        params: RedisParams,
        key: str | None,
        is_write: bool,
        command: str,
        args: Sequence[Any],
        *,
        task: TaskProtocol | None = None,
        pipeline: Pipeline | None = None,
    ) -> Any:
        """
        Send a command and wait for the reply.

        Raises:
            RoutingError: If no server of the replica set is reachable
            DispatchError: If the request could not be sent
            redis.exceptions.RedisError: Whatever the server or connection reported
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()

        def _on_reply(err: BaseException | None, data: Any) -> None:
            if future.done():
                return
            if err is not None:
                future.set_exception(err)
            else:
                future.set_result(data)

        if task is not None:
            result = self.make_request(
                task, params, key, is_write, _on_reply, command, args, pipeline=pipeline
            )
        else:
            result = self.make_request_taskless(
                loop, params, key, is_write, _on_reply, command, args, pipeline=pipeline
            )
        if not result:
            if command and params is not None and result.upstream is None:
                raise RoutingError(f"cannot select server for: {command}")
            raise DispatchError(f"cannot make redis request: {command}")
        return await future


__all__ = ["DispatchResult", "RedisDispatcher", "RequestCallback"]
