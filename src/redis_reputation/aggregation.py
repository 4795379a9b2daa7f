# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Token aggregation for Redis Reputation

This module provides TokenAggregator, which looks up many reputation tokens
concurrently and combines whatever came back into one score.

Key Features:
- One get_token per query, all in flight at once
- Exactly one finalize per aggregation, after every lookup reported back
- Failed or missing lookups count as completed and contribute nothing
- An empty query list finalizes immediately

A lookup whose transport never completes leaves its aggregation
unfinalized; timeouts are the transport's job.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING

from .backends.base import TokenBackend, TokenValues
from .exceptions import ReputationError
from .fanin import FanIn
from .observability.metrics import AGGREGATIONS_TOTAL
from .protocols.task import TaskProtocol

if TYPE_CHECKING:
    from .rules import ReputationRule

logger = logging.getLogger(__name__)

# score_func(values, multiplier) -> score
ScoreFunc = Callable[[Mapping[str, float], float], float]

DEFAULT_LOWER_BOUND = 10.0


def generic_reputation_calc(
    values: Mapping[str, float],
    lower_bound: float = DEFAULT_LOWER_BOUND,
    multiplier: float = 1.0,
) -> float:
    """
    Score a token from its ham/spam/probable counters.

    Ham pulls towards -1, spam towards +1 and probable spam towards +0.5,
    each weighted by its share of all samples. Tokens with fewer than
    ``lower_bound`` samples score 0.
    """
    ham = values.get("h", 0.0)
    spam = values.get("s", 0.0)
    probable = values.get("p", 0.0)
    total = ham + spam + probable

    if total <= 0 or total < lower_bound:
        return 0.0

    score = (ham / total) * -1.0 + (spam / total) + (probable / total) * 0.5
    return score * multiplier


@dataclass
class AggregationResult:
    """
    Outcome of one aggregation.

    Attributes:
        score: Weighted sum over successful lookups
        values: Counters of successful lookups, by query
        errors: Errors of failed lookups, by query
    """

    score: float
    values: dict[str, TokenValues] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)


@dataclass
class AggregationRequest:
    """Per-invocation state of an aggregation; discarded after finalize."""

    queries: list[str]
    weights: dict[str, float]
    partial_results: dict[str, TokenValues | None] = field(default_factory=dict)
    errors: dict[str, BaseException] = field(default_factory=dict)
    _join: FanIn | None = field(default=None, repr=False)

    @property
    def expected_count(self) -> int:
        return len(self.queries)

    @property
    def received_count(self) -> int:
        return self._join.received if self._join is not None else 0

    @property
    def finalized(self) -> bool:
        return self._join is not None and self._join.finished


class TokenAggregator:
    """
    Fans token lookups out to a backend and fans the results back in.

    Example:
        aggregator = TokenAggregator(backend)
        aggregator.aggregate(task, rule, {"a:15169": 0.4, "i:8.8.8.8": 1.0}, on_done)
    """

    def __init__(
        self,
        backend: TokenBackend,
        score_func: ScoreFunc | None = None,
        lower_bound: float = DEFAULT_LOWER_BOUND,
    ) -> None:
        self.backend = backend
        self.lower_bound = lower_bound
        self._score_func = score_func

    def score(self, values: Mapping[str, float], multiplier: float = 1.0) -> float:
        if self._score_func is not None:
            return self._score_func(values, multiplier)
        return generic_reputation_calc(values, self.lower_bound, multiplier)

    def aggregate(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        queries: Sequence[str] | Mapping[str, float],
        on_finalize: Callable[[AggregationResult], None],
    ) -> AggregationRequest:
        """
        Look up every query and call ``on_finalize`` once all have reported.

        Args:
            task: Task the lookups belong to
            rule: Rule on whose behalf the lookups run
            queries: Query strings, or a mapping of query to score multiplier
            on_finalize: Called exactly once with the combined result

        Returns:
            The in-progress AggregationRequest
        """
        if isinstance(queries, Mapping):
            weights = {query: float(weight) for query, weight in queries.items()}
        else:
            weights = {query: 1.0 for query in queries}
        request = AggregationRequest(queries=list(weights), weights=weights)

        def _finalize() -> None:
            result = self._combine(request)
            AGGREGATIONS_TOTAL.inc()
            logger.debug(
                f"<{task.task_id}> {rule.symbol}: aggregated "
                f"{len(result.values)}/{request.expected_count} tokens, "
                f"score {result.score:.3f}"
            )
            on_finalize(result)

        join = FanIn(request.expected_count, _finalize)
        request._join = join
        for query in request.queries:
            self.backend.get_token(
                task, rule, query, partial(self._on_token, request, query, join.slot())
            )
        return request

    def _on_token(
        self,
        request: AggregationRequest,
        query: str,
        done: Callable[[], None],
        err: BaseException | None,
        key: str,
        values: TokenValues | None,
    ) -> None:
        if err is None and values is not None:
            request.partial_results[query] = values
        else:
            request.partial_results[query] = None
            request.errors[query] = err or ReputationError(f"no response for {key}")
        done()

    def _combine(self, request: AggregationRequest) -> AggregationResult:
        result = AggregationResult(score=0.0, errors=dict(request.errors))
        for query in request.queries:
            values = request.partial_results.get(query)
            if values is None:
                continue
            result.values[query] = values
            result.score += self.score(values, request.weights[query])
        return result

    async def aggregate_async(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        queries: Sequence[str] | Mapping[str, float],
    ) -> AggregationResult:
        """Aggregate and wait for the result."""
        future: asyncio.Future[AggregationResult] = task.loop.create_future()

        def _on_finalize(result: AggregationResult) -> None:
            if not future.done():
                future.set_result(result)

        self.aggregate(task, rule, queries, _on_finalize)
        return await future


__all__ = [
    "DEFAULT_LOWER_BOUND",
    "AggregationRequest",
    "AggregationResult",
    "ScoreFunc",
    "TokenAggregator",
    "generic_reputation_calc",
]
