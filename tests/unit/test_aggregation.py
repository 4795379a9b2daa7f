"""Unit tests for token aggregation."""

import asyncio
from unittest.mock import Mock

import pytest
from redis.exceptions import TimeoutError

from redis_reputation.aggregation import TokenAggregator, generic_reputation_calc
from redis_reputation.backends.base import TokenBackend, TokenBackendOptions
from redis_reputation.backends.redis import RedisTokenBackend, RedisTokenBackendOptions
from redis_reputation.task import MessageTask


class RecordingBackend(TokenBackend):
    name = "recording"

    def __init__(self):
        super().__init__(TokenBackendOptions(type="recording"))
        self.calls = []

    def get_token(self, task, rule, token, callback):
        self.calls.append((token, callback))

    def reply(self, index, err=None, values=None):
        token, callback = self.calls[index]
        callback(err, token, values)


@pytest.fixture
def rule():
    return Mock(symbol="REP")


@pytest.fixture
def backend():
    return RecordingBackend()


class TestGenericReputationCalc:
    def test_below_lower_bound(self):
        """Too few samples score zero."""
        assert generic_reputation_calc({"s": 5.0}, lower_bound=10) == 0.0

    def test_no_samples(self):
        """An empty token scores zero."""
        assert generic_reputation_calc({}, lower_bound=0) == 0.0

    def test_all_spam(self):
        """Only spam hits score 1."""
        assert generic_reputation_calc({"s": 20.0}) == pytest.approx(1.0)

    def test_all_ham(self):
        """Only ham hits score -1."""
        assert generic_reputation_calc({"h": 20.0}) == pytest.approx(-1.0)

    def test_mixed_with_multiplier(self):
        """Probable spam counts half, and the multiplier scales the result."""
        values = {"h": 10.0, "s": 5.0, "p": 5.0}
        # (-10 + 5 + 2.5) / 20 = -0.125
        assert generic_reputation_calc(values, multiplier=2.0) == pytest.approx(-0.25)


class TestTokenAggregator:
    def test_finalizes_once_with_partial_results(self, backend, task, rule):
        """Three lookups, the second fails: one finalize with the other two."""
        on_finalize = Mock()
        aggregator = TokenAggregator(backend, lower_bound=0)
        request = aggregator.aggregate(task, rule, ["q1", "q2", "q3"], on_finalize)

        assert [token for token, _ in backend.calls] == ["q1", "q2", "q3"]
        backend.reply(0, values={"s": 4.0})
        err = TimeoutError("timeout")
        backend.reply(1, err=err)
        on_finalize.assert_not_called()
        assert request.received_count == 2
        assert not request.finalized

        backend.reply(2, values={"h": 4.0})
        on_finalize.assert_called_once()
        result = on_finalize.call_args.args[0]
        assert set(result.values) == {"q1", "q3"}
        assert result.errors == {"q2": err}
        assert result.score == pytest.approx(0.0)
        assert request.finalized
        assert request.partial_results["q2"] is None

    def test_replies_in_any_order(self, backend, task, rule):
        """Finalize waits for the last reply whatever the order."""
        on_finalize = Mock()
        TokenAggregator(backend).aggregate(task, rule, ["a", "b"], on_finalize)
        backend.reply(1, values={})
        backend.reply(0, values={})
        on_finalize.assert_called_once()

    def test_empty_queries_finalize_immediately(self, backend, task, rule):
        """No queries finalize at once with a zero score."""
        on_finalize = Mock()
        request = TokenAggregator(backend).aggregate(task, rule, [], on_finalize)
        on_finalize.assert_called_once()
        assert on_finalize.call_args.args[0].score == 0.0
        assert request.expected_count == 0
        assert backend.calls == []

    def test_weighted_queries(self, backend, task, rule):
        """Per-query weights act as score multipliers."""
        on_finalize = Mock()
        aggregator = TokenAggregator(backend, lower_bound=0)
        aggregator.aggregate(task, rule, {"a": 0.5, "b": 1.0}, on_finalize)
        backend.reply(0, values={"s": 1.0})
        backend.reply(1, values={"s": 1.0})
        assert on_finalize.call_args.args[0].score == pytest.approx(1.5)

    def test_duplicate_queries_looked_up_once(self, backend, task, rule):
        """Repeated queries are looked up once."""
        on_finalize = Mock()
        TokenAggregator(backend).aggregate(task, rule, ["a", "a"], on_finalize)
        assert len(backend.calls) == 1
        backend.reply(0, values={})
        on_finalize.assert_called_once()

    def test_missing_values_counted_as_error(self, backend, task, rule):
        """A reply without values is recorded as an error."""
        on_finalize = Mock()
        TokenAggregator(backend).aggregate(task, rule, ["a"], on_finalize)
        backend.reply(0)
        result = on_finalize.call_args.args[0]
        assert "a" in result.errors

    def test_finalizes_when_keys_cannot_be_built(
        self, dispatcher, params, transport, task, rule
    ):
        """Key derivation failures count as absent tokens."""
        options = RedisTokenBackendOptions.model_construct(
            type="redis",
            hashed=True,
            hash_alg="nope",
            hash_encoding="base32",
            hashlen=None,
            expiry=60,
        )
        backend = RedisTokenBackend(options, dispatcher, params)
        on_finalize = Mock()

        TokenAggregator(backend).aggregate(task, rule, ["a", "b"], on_finalize)

        on_finalize.assert_called_once()
        result = on_finalize.call_args.args[0]
        assert result.score == 0.0
        assert set(result.errors) == {"a", "b"}
        assert transport.requests == []

    def test_duplicate_callback_ignored(self, backend, task, rule):
        """A lookup reporting twice counts once."""
        on_finalize = Mock()
        TokenAggregator(backend).aggregate(task, rule, ["a", "b"], on_finalize)
        backend.reply(0, values={})
        backend.reply(0, values={})
        on_finalize.assert_not_called()
        backend.reply(1, values={})
        on_finalize.assert_called_once()

    def test_custom_score_func(self, backend, task, rule):
        """A custom score function replaces the generic calculation."""
        on_finalize = Mock()
        aggregator = TokenAggregator(backend, score_func=lambda values, mult: 7.0)
        aggregator.aggregate(task, rule, ["a"], on_finalize)
        backend.reply(0, values={})
        assert on_finalize.call_args.args[0].score == 7.0

    @pytest.mark.asyncio
    async def test_aggregate_async(self, backend, rule):
        """aggregate_async returns the finalized result."""
        task = MessageTask(loop=asyncio.get_running_loop())
        aggregator = TokenAggregator(backend, lower_bound=0)

        pending = asyncio.ensure_future(aggregator.aggregate_async(task, rule, ["a"]))
        await asyncio.sleep(0)
        backend.reply(0, values={"h": 2.0})
        result = await pending
        assert result.score == pytest.approx(-1.0)
