"""
Shared fixtures for benchmark tests.
"""

import asyncio

import pytest

from redis_reputation.config import RedisParams
from redis_reputation.dispatcher import RedisDispatcher
from redis_reputation.upstream import UpstreamList


class InstantTransport:
    """Transport that answers every request on the next loop iteration."""

    def __init__(self, reply=None):
        self.reply = reply if reply is not None else {"h": "1", "s": "20"}
        self.submitted = 0

    def submit(self, request):
        self.submitted += 1
        data = "bench-sha" if request.command == "SCRIPT" else self.reply
        asyncio.get_running_loop().call_soon(request.callback, None, data)
        return True, None


@pytest.fixture
def instant_transport():
    return InstantTransport()


@pytest.fixture
def benchmark_dispatcher(instant_transport):
    return RedisDispatcher(instant_transport)


@pytest.fixture
def benchmark_params():
    servers = UpstreamList.parse("bench-1,bench-2,bench-3")
    return RedisParams(read_servers=servers, write_servers=servers, expand_keys=True)
