# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Script registry for Redis Reputation

This module provides ScriptRegistry, which keeps server-side cached Lua
scripts usable across server restarts.

Key Features:
- Register once, invoke by id
- SCRIPT LOAD broadcast to every distinct server of the read and write sets
- Callers queued while a load is in flight, drained once when it finishes
- Transparent reload on NOSCRIPT, with exactly one replay per invocation

Lifecycle of a script:
    UNLOADED --load--> LOADING --all replies--> LOADED --NOSCRIPT--> STALE
    STALE --reload--> LOADING

All servers are assumed to return the same hash for the same script body.
The hash is taken from whichever reply arrives last and is not re-validated
against the other servers.
"""

import asyncio
import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any

from .config import RedisParams
from .dispatcher import RedisDispatcher, RequestCallback
from .exceptions import (
    DispatchError,
    ScriptNotFoundError,
    ScriptNotLoadedError,
    is_noscript_error,
)
from .fanin import FanIn
from .observability.metrics import (
    SCRIPT_LOADS_TOTAL,
    SCRIPT_RELOADS_TOTAL,
    record_upstream_failure,
)
from .protocols.task import TaskProtocol
from .protocols.transport import TransportRequest
from .protocols.upstream import HealthTrackerProtocol

logger = logging.getLogger(__name__)

# waiter(available) - called once when the load cycle it waits for ends
ScriptWaiter = Callable[[bool], None]


class ScriptState(Enum):
    """Load state of a registered script."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"
    STALE = "stale"


@dataclass
class RedisScript:
    """
    A registered script.

    ``loaded`` turns True after the first successful load and stays True;
    ``sha`` is cleared when a server reports the script missing.
    """

    id: int
    body: str
    params: RedisParams
    sha: str | None = None
    loaded: bool = False
    wait_queue: list[ScriptWaiter] = field(default_factory=list)
    _load_join: FanIn | None = field(default=None, repr=False)

    @property
    def in_flight(self) -> int:
        """SCRIPT LOAD requests of the current cycle still awaiting a reply."""
        return self._load_join.pending if self._load_join is not None else 0

    @property
    def state(self) -> ScriptState:
        if self.in_flight > 0:
            return ScriptState.LOADING
        if self.sha is not None and self.loaded:
            return ScriptState.LOADED
        if self.loaded:
            return ScriptState.STALE
        return ScriptState.UNLOADED


@dataclass
class ScriptCallParams:
    """
    Execution context of one script invocation.

    Attributes:
        task: Task-bound invocation; takes precedence over ``loop``
        loop: Event loop for task-less invocations
        key: Routing key
        is_write: Route to the write set
    """

    task: TaskProtocol | None = None
    loop: asyncio.AbstractEventLoop | None = None
    key: str | None = None
    is_write: bool = False

    @property
    def label(self) -> str:
        return self.task.task_id if self.task is not None else "config"


class _ScriptCall:
    """One invocation of a script, replayed at most once after a reload."""

    def __init__(
        self,
        registry: "ScriptRegistry",
        script: RedisScript,
        params: ScriptCallParams,
        callback: RequestCallback,
        args: list[Any],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._registry = registry
        self._script = script
        self._params = params
        self._callback = callback
        self._args = args
        self._loop = loop

    def run(self, can_reload: bool) -> None:
        sha = self._script.sha
        if sha is None:
            self._callback(ScriptNotLoadedError(self._script.id), None)
            return

        # EVALSHA sha numkeys key1 .. keyN, every argument is passed as a key
        evalsha_args = [sha, str(len(self._args)), *self._args]
        on_reply = partial(self._on_reply, can_reload)
        dispatcher = self._registry.dispatcher
        if self._params.task is not None:
            result = dispatcher.make_request(
                self._params.task,
                self._script.params,
                self._params.key,
                self._params.is_write,
                on_reply,
                "EVALSHA",
                evalsha_args,
            )
        else:
            result = dispatcher.make_request_taskless(
                self._loop,
                self._script.params,
                self._params.key,
                self._params.is_write,
                on_reply,
                "EVALSHA",
                evalsha_args,
            )

        if not result:
            self._callback(DispatchError("Cannot make redis request"), None)

    def _on_reply(self, can_reload: bool, err: BaseException | None, data: Any) -> None:
        if not is_noscript_error(err):
            self._callback(err, data)
            return

        script = self._script
        script.sha = None
        if not can_reload:
            logger.warning(
                f"<{self._params.label}> script {script.id} is still missing "
                "after reload"
            )
            self._callback(err, data)
            return

        logger.warning(
            f"<{self._params.label}> script {script.id} is not loaded on the "
            "server, reloading"
        )
        script.wait_queue.append(self.on_reload)
        if script.in_flight == 0:
            SCRIPT_RELOADS_TOTAL.inc()
            self._registry._load(script, self._loop, self._params.label)

    def on_initial_load(self, available: bool) -> None:
        if available:
            self.run(can_reload=True)
        else:
            self._callback(ScriptNotLoadedError(self._script.id), None)

    def on_reload(self, available: bool) -> None:
        if available:
            self.run(can_reload=False)
        else:
            self._callback(
                ScriptNotLoadedError(
                    self._script.id,
                    f"NOSCRIPT: reload of script {self._script.id} failed",
                ),
                None,
            )


class ScriptRegistry:
    """
    Process-wide registry of server-side scripts.

    Owned by the service root and passed to whatever needs to run scripts.
    Scripts are appended and never removed; ids start at 1.

    Example:
        registry = ScriptRegistry(dispatcher)
        script_id = registry.add_script(LUA_BODY, params)
        registry.load_all(loop)
        ...
        registry.exec_script(script_id, ScriptCallParams(task=task), on_reply, [key])
    """

    def __init__(self, dispatcher: RedisDispatcher) -> None:
        self.dispatcher = dispatcher
        self._scripts: list[RedisScript] = []

    def add_script(self, body: str, params: RedisParams) -> int:
        """Register a script body; returns its id."""
        script = RedisScript(id=len(self._scripts) + 1, body=body, params=params)
        self._scripts.append(script)
        return script.id

    def get(self, script_id: int) -> RedisScript | None:
        if 1 <= script_id <= len(self._scripts):
            return self._scripts[script_id - 1]
        return None

    def __len__(self) -> int:
        return len(self._scripts)

    def __iter__(self) -> Iterator[RedisScript]:
        return iter(self._scripts)

    def load_all(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start loading every script that is neither loaded nor loading."""
        for script in self._scripts:
            if script.state in (ScriptState.UNLOADED, ScriptState.STALE):
                self._load(script, loop, "config")

    def load_script(
        self,
        script_id: int,
        loop: asyncio.AbstractEventLoop,
        waiter: ScriptWaiter | None = None,
    ) -> bool:
        """
        Load one script, or join its in-flight load.

        ``waiter`` is called with the availability of the script once the
        load cycle ends.
        """
        script = self.get(script_id)
        if script is None:
            logger.error(f"cannot find registered script with id {script_id}")
            return False

        if waiter is not None:
            script.wait_queue.append(waiter)
        if script.in_flight == 0:
            self._load(script, loop, "config")
        return True

    def _load(
        self, script: RedisScript, loop: asyncio.AbstractEventLoop, label: str
    ) -> None:
        upstreams = script.params.all_upstreams()
        join = FanIn(len(upstreams), partial(self._set_loaded, script))
        script._load_join = join

        for upstream in upstreams:
            done = join.slot()
            request = TransportRequest(
                host=upstream.address(),
                timeout=script.params.timeout,
                command="SCRIPT",
                args=["LOAD", script.body],
                callback=partial(self._on_load_reply, script, upstream, label, done),
                password=script.params.password,
                db=script.params.db,
                loop=loop,
            )
            accepted, _ = self.dispatcher.transport.submit(request)
            if not accepted:
                logger.error(
                    f"<{label}> cannot execute redis request to load script "
                    f"{script.id} on {upstream.address()}"
                )
                SCRIPT_LOADS_TOTAL.labels(outcome="rejected").inc()
                record_upstream_failure(upstream)
                done()

    def _on_load_reply(
        self,
        script: RedisScript,
        upstream: HealthTrackerProtocol,
        label: str,
        done: Callable[[], None],
        err: BaseException | None,
        data: Any,
    ) -> None:
        if err is not None:
            logger.warning(
                f"<{label}> cannot load redis script {script.id} on "
                f"{upstream.address()}: {err}"
            )
            SCRIPT_LOADS_TOTAL.labels(outcome="failure").inc()
            record_upstream_failure(upstream)
        else:
            upstream.mark_success()
            sha = data.decode() if isinstance(data, bytes) else str(data)
            logger.info(
                f"<{label}> loaded redis script with id {script.id}, sha: {sha}"
            )
            SCRIPT_LOADS_TOTAL.labels(outcome="success").inc()
            script.sha = sha
        done()

    def _set_loaded(self, script: RedisScript) -> None:
        if script.sha is not None:
            script.loaded = True
        available = script.state is ScriptState.LOADED

        waiters, script.wait_queue = script.wait_queue, []
        for waiter in waiters:
            waiter(available)

    def exec_script(
        self,
        script_id: int,
        params: ScriptCallParams,
        callback: RequestCallback,
        args: Sequence[Any],
    ) -> bool:
        """
        Run a registered script with EVALSHA.

        Before the script is loaded, task-less callers are queued until the
        load finishes; task-bound callers get ScriptNotLoadedError at once.
        A NOSCRIPT reply triggers one reload cycle and one replay; a second
        NOSCRIPT is delivered to the callback.

        Returns:
            False if the script id is unknown or no event loop is available;
            the callback is then never invoked.
        """
        script = self.get(script_id)
        if script is None:
            logger.error(f"cannot find registered script with id {script_id}")
            return False

        loop = params.task.loop if params.task is not None else params.loop
        if loop is None:
            logger.error(f"script {script_id} invoked without a task or event loop")
            return False

        call = _ScriptCall(self, script, params, callback, list(args), loop)
        if script.state is ScriptState.LOADED:
            call.run(can_reload=True)
        elif params.task is not None:
            # TODO: queue task-bound callers too once tasks can hold pending events
            callback(ScriptNotLoadedError(script.id), None)
        else:
            script.wait_queue.append(call.on_initial_load)
            if script.in_flight == 0:
                self._load(script, loop, params.label)
        return True

    async def evalsha(
        self,
        script_id: int,
        args: Sequence[Any],
        *,
        task: TaskProtocol | None = None,
        key: str | None = None,
        is_write: bool = False,
    ) -> Any:
        """
        Run a registered script and wait for the reply.

        Raises:
            ScriptNotFoundError: If the id was never registered
            ScriptNotLoadedError: If the script could not be loaded
            redis.exceptions.RedisError: Whatever the server reported
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

        params = ScriptCallParams(task=task, loop=loop, key=key, is_write=is_write)
        if not self.exec_script(script_id, params, _on_reply, args):
            raise ScriptNotFoundError(script_id)
        return await future


__all__ = [
    "RedisScript",
    "ScriptCallParams",
    "ScriptRegistry",
    "ScriptState",
    "ScriptWaiter",
]
