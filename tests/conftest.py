# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures.

FakeTransport records submitted requests instead of sending them; tests
complete a request by calling ``reply`` with the error or data the server
would have returned.
"""

import asyncio

import pytest

from redis_reputation.config import RedisParams
from redis_reputation.dispatcher import RedisDispatcher
from redis_reputation.task import EmailAddress, MessageTask
from redis_reputation.upstream import UpstreamList


class FakeTransport:
    def __init__(self, accept=True):
        # accept: bool, or callable(request) -> bool
        self.accept = accept
        self.requests = []
        self.rejected = []

    def submit(self, request):
        accepted = self.accept(request) if callable(self.accept) else self.accept
        if not accepted:
            self.rejected.append(request)
            return False, None
        self.requests.append(request)
        return True, f"conn-{len(self.requests)}"

    def reply(self, index, err=None, data=None):
        self.requests[index].callback(err, data)

    def hosts(self):
        return [r.host for r in self.requests]


class FakeResolver:
    def __init__(self, accept=True):
        self.accept = accept
        self.lookups = []

    def resolve_txt(self, name, callback):
        if not self.accept:
            return False
        self.lookups.append((name, callback))
        return True

    def reply(self, index, err=None, records=None):
        self.lookups[index][1](err, records)


@pytest.fixture
def loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def dispatcher(transport):
    return RedisDispatcher(transport)


@pytest.fixture
def params():
    servers = UpstreamList.parse("127.0.0.1:6379")
    return RedisParams(read_servers=servers, write_servers=servers)


@pytest.fixture
def task(loop):
    return MessageTask(
        loop=loop,
        task_id="t1",
        principal_recipient="rcpt@example.org",
        ip="192.0.2.1",
        smtp_from=EmailAddress.parse("user@mail.example.com"),
        helo="mx.example.net",
    )
