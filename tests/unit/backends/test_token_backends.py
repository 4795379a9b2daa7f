"""Unit tests for the token backends."""

import asyncio
from dataclasses import replace
from unittest.mock import Mock, patch

import pytest
from pydantic import ValidationError
from redis.exceptions import ResponseError

from redis_reputation.backends.base import (
    TokenBackendOptions,
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
from redis_reputation.exceptions import (
    ConfigurationError,
    DecodeError,
    DispatchError,
    NameNotFoundError,
    ReputationError,
)
from redis_reputation.task import MessageTask


@pytest.fixture
def rule():
    return Mock(symbol="IP_REPUTATION")


class TestGenTokenKey:
    def test_plain(self):
        assert gen_token_key("example.com", TokenBackendOptions(type="redis")) == (
            "example.com"
        )

    def test_truncated(self):
        """hashlen truncates the key."""
        options = TokenBackendOptions(type="redis", hashlen=4)
        assert gen_token_key("example.com", options) == "exam"

    def test_hashed_base32_is_lowercase_without_padding(self):
        """Hashed base32 keys are lowercase and unpadded."""
        key = gen_token_key("example.com", TokenBackendOptions(type="redis", hashed=True))
        assert key == key.lower()
        assert "=" not in key
        assert key != "example.com"

    def test_hashed_base32_uses_rfc4648_alphabet(self):
        """Hashed keys use the standard base32 alphabet, lowercased."""
        options = TokenBackendOptions(type="redis", hashed=True)
        key = gen_token_key("example.com", options)
        assert set(key) <= set("abcdefghijklmnopqrstuvwxyz234567")

    def test_hashed_is_deterministic(self):
        """The same token always hashes to the same key."""
        options = TokenBackendOptions(type="redis", hashed=True, hashlen=16)
        assert gen_token_key("a", options) == gen_token_key("a", options)
        assert len(gen_token_key("a", options)) == 16

    def test_hex_sha256(self):
        """hashlib algorithms can be combined with hex encoding."""
        options = TokenBackendOptions(
            type="redis", hashed=True, hash_alg="sha256", hash_encoding="hex"
        )
        assert len(gen_token_key("a", options)) == 64

    @pytest.mark.parametrize("alg", ["nope", "shake_128", "shake_256"])
    def test_unsupported_algorithm_rejected_by_options(self, alg):
        """Unknown and variable-length algorithms fail when options load."""
        with pytest.raises(ValidationError, match="hash algorithm"):
            TokenBackendOptions(type="redis", hashed=True, hash_alg=alg)

    @pytest.mark.parametrize("alg", ["nope", "shake_128"])
    def test_unsupported_algorithm_on_unvalidated_options(self, alg):
        """Options built without validation still fail as ConfigurationError."""
        options = TokenBackendOptions.model_construct(
            type="redis", hashed=True, hash_alg=alg, hash_encoding="base32"
        )
        with pytest.raises(ConfigurationError):
            gen_token_key("a", options)


class TestParseNumericPairs:
    def test_flat_list(self):
        """HGETALL as a flat reply: numeric fields parsed, others skipped."""
        assert parse_numeric_pairs(["h", "12", "s", "3", "note", "x"]) == {
            "h": 12.0,
            "s": 3.0,
        }

    def test_mapping_with_bytes(self):
        """Byte field names and values from a mapping reply are decoded."""
        assert parse_numeric_pairs({b"p": b"1.5"}) == {"p": 1.5}

    def test_empty(self):
        """An empty reply gives empty counters."""
        assert parse_numeric_pairs([]) == {}


class TestRedisTokenBackend:
    @pytest.fixture
    def backend(self, dispatcher, params):
        return RedisTokenBackend(RedisTokenBackendOptions(), dispatcher, params)

    def test_get_token(self, backend, transport, task, rule):
        """get_token reads the hash with HGETALL."""
        callback = Mock()
        backend.get_token(task, rule, "example.com", callback)

        request = transport.requests[0]
        assert request.command == "HGETALL"
        assert request.args == ["example.com"]

        transport.reply(0, data={"h": "10", "s": "2", "last": "1700000000"})
        callback.assert_called_once_with(
            None, "example.com", {"h": 10.0, "s": 2.0, "last": 1700000000.0}
        )

    def test_prefix_prepended(self, dispatcher, params, transport, task, rule):
        """The configured prefix is prepended to the key."""
        backend = RedisTokenBackend(
            RedisTokenBackendOptions(), dispatcher, replace(params, prefix="rep_")
        )
        backend.get_token(task, rule, "example.com", Mock())
        assert transport.requests[0].args == ["rep_example.com"]

    def test_missing_key_is_empty(self, backend, transport, task, rule):
        """A missing key is an empty token, not an error."""
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        transport.reply(0, data={})
        callback.assert_called_once_with(None, "k", {})

    def test_server_error(self, backend, transport, task, rule):
        """Server errors are passed to the callback."""
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        err = ResponseError("WRONGTYPE")
        transport.reply(0, err=err)
        callback.assert_called_once_with(err, "k", None)

    def test_invalid_reply_type(self, backend, transport, task, rule):
        """A non-hash reply is reported as DecodeError."""
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        transport.reply(0, data="OK")
        err, key, values = callback.call_args.args
        assert isinstance(err, DecodeError)
        assert err.key == "k"
        assert values is None

    def test_dispatch_rejected(self, backend, transport, task, rule):
        """A rejected request is reported as DispatchError."""
        transport.accept = False
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        err, key, values = callback.call_args.args
        assert isinstance(err, DispatchError)
        assert values is None

    def test_set_token_pipeline(self, backend, transport, task, rule):
        """set_token increments, stamps and expires in one pipeline."""
        callback = Mock()
        with patch("redis_reputation.backends.redis.time.time", return_value=1000.5):
            backend.set_token(task, rule, "k", {"s": 1.0}, callback)

        request = transport.requests[0]
        assert request.commands() == [
            ("HINCRBYFLOAT", ["k", "s", "1.0"]),
            ("HSET", ["k", "last", "1000"]),
            ("EXPIRE", ["k", "864000"]),
        ]
        transport.reply(0, data=[1.0, 0, True])
        callback.assert_called_once_with(None, "k")

    def test_set_token_custom_expiry(self, dispatcher, params, transport, task, rule):
        """Every counter gets its own increment, and expiry is configurable."""
        backend = RedisTokenBackend(
            RedisTokenBackendOptions(expiry=60), dispatcher, params
        )
        backend.set_token(task, rule, "k", {"h": 1.0, "p": 2.0})
        commands = transport.requests[0].commands()
        assert [c for c, _ in commands] == ["HINCRBYFLOAT", "HINCRBYFLOAT", "HSET", "EXPIRE"]
        assert commands[-1] == ("EXPIRE", ["k", "60"])

    def test_bad_key_derivation_reported_to_callback(
        self, dispatcher, params, transport, task, rule
    ):
        """A key that cannot be built is reported, not raised."""
        options = RedisTokenBackendOptions.model_construct(
            type="redis",
            hashed=True,
            hash_alg="shake_128",
            hash_encoding="base32",
            hashlen=None,
            expiry=864000,
        )
        backend = RedisTokenBackend(options, dispatcher, params)
        callback = Mock()

        backend.get_token(task, rule, "k", callback)

        err, key, values = callback.call_args.args
        assert isinstance(err, ConfigurationError)
        assert key == "k"
        assert values is None
        assert transport.requests == []

        set_callback = Mock()
        backend.set_token(task, rule, "k", {"s": 1.0}, set_callback)
        assert isinstance(set_callback.call_args.args[0], ConfigurationError)
        assert transport.requests == []

    def test_set_token_rejected(self, backend, transport, task, rule):
        """A rejected learn request is reported to the callback."""
        transport.accept = False
        callback = Mock()
        backend.set_token(task, rule, "k", {"s": 1.0}, callback)
        err, key = callback.call_args.args
        assert isinstance(err, DispatchError)

    @pytest.mark.asyncio
    async def test_get_token_async(self, dispatcher, params, rule):
        """get_token_async resolves to the decoded counters."""
        task = MessageTask(loop=asyncio.get_running_loop())
        transport = dispatcher.transport
        backend = RedisTokenBackend(RedisTokenBackendOptions(), dispatcher, params)

        pending = asyncio.ensure_future(backend.get_token_async(task, rule, "k"))
        await asyncio.sleep(0)
        transport.reply(0, data=["h", "4"])
        assert await pending == {"h": 4.0}


class TestDnsTokenBackend:
    @pytest.fixture
    def backend(self, resolver):
        return DnsTokenBackend(
            DnsTokenBackendOptions(list="rep.example.net"), resolver
        )

    def test_requires_list(self, resolver):
        """The DNS backend requires a list zone."""
        with pytest.raises(ConfigurationError):
            DnsTokenBackend(DnsTokenBackendOptions(), resolver)

    def test_parse_record(self):
        """TXT records parse to counters, skipping malformed pairs."""
        assert parse_dns_token('"h=1;s=2.5;bad;x=y"') == {"h": 1.0, "s": 2.5}

    def test_get_token(self, backend, resolver, task, rule):
        """get_token looks up the token under the list zone."""
        callback = Mock()
        backend.get_token(task, rule, "example.com", callback)

        assert resolver.lookups[0][0] == "example.com.rep.example.net"
        resolver.reply(0, records=["h=3;s=1"])
        callback.assert_called_once_with(
            None, "example.com.rep.example.net", {"h": 3.0, "s": 1.0}
        )

    def test_not_listed_is_empty(self, backend, resolver, task, rule):
        """NXDOMAIN is an empty token."""
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        resolver.reply(0, err=NameNotFoundError("NXDOMAIN"))
        callback.assert_called_once_with(None, "k.rep.example.net", {})

    def test_resolver_error(self, backend, resolver, task, rule):
        """Other resolver errors are passed to the callback."""
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        err = ReputationError("SERVFAIL")
        resolver.reply(0, err=err)
        callback.assert_called_once_with(err, "k.rep.example.net", None)

    def test_lookup_not_started(self, resolver, task, rule):
        """A lookup the resolver refuses is reported as DispatchError."""
        resolver.accept = False
        backend = DnsTokenBackend(DnsTokenBackendOptions(list="l"), resolver)
        callback = Mock()
        backend.get_token(task, rule, "k", callback)
        err, _, values = callback.call_args.args
        assert isinstance(err, DispatchError)
        assert values is None

    def test_read_only(self, backend, task, rule):
        """The DNS backend cannot learn."""
        assert not backend.writable
        with pytest.raises(NotImplementedError):
            backend.set_token(task, rule, "k", {"s": 1.0})

    def test_bad_key_derivation_reported_to_callback(self, resolver, task, rule):
        """A key that cannot be built is reported, not raised."""
        options = DnsTokenBackendOptions.model_construct(
            type="dns",
            hashed=True,
            hash_alg="nope",
            hash_encoding="base32",
            hashlen=None,
            list="l",
        )
        backend = DnsTokenBackend(options, resolver)
        callback = Mock()

        backend.get_token(task, rule, "k", callback)

        err, key, values = callback.call_args.args
        assert isinstance(err, ConfigurationError)
        assert values is None
        assert resolver.lookups == []
