# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Reputation selectors.

A selector turns pre-extracted message features into token queries, and
turns the aggregated tokens back into a symbol score. Each selector has:

- filter: look tokens up and insert the rule symbol
- idempotent: learn the final action of the message into the tokens
- postfilter (optional): adjust other symbols after all filters ran

Features are read from ``task.features``:

    dkim         {"example.com": "a", "bad.test": "r"}   (a/r/u)
    url_domains  {"example.com": 3, "other.test": 1}     (domain -> hits)
    ip, asn, country, ipnet                             (strings)
"""

import abc
import ipaddress
import logging
import math
from functools import partial
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

from .aggregation import DEFAULT_LOWER_BOUND, AggregationResult
from .protocols.task import TaskProtocol

if TYPE_CHECKING:
    from .rules import ReputationRule

logger = logging.getLogger(__name__)

DEFAULT_KEYS_MAP = {
    "reject": "s",
    "add header": "p",
    "rewrite subject": "p",
    "no action": "h",
}

# Scores below this are not worth a symbol
MIN_SCORE = 1e-3


class SelectorOptions(BaseModel):
    """
    Options shared by all selectors.

    Attributes:
        keys_map: Action to counter name used when learning
            (h = ham, s = spam, p = probable spam)
        lower_bound: Minimum number of samples for a token to be scored
        outbound: Check messages from authenticated users or local IPs
        inbound: Check all other messages
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    keys_map: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_KEYS_MAP))
    lower_bound: float = DEFAULT_LOWER_BOUND
    outbound: bool = True
    inbound: bool = True


class Selector(abc.ABC):
    """Base class of reputation selectors."""

    type: ClassVar[str]
    options_model: ClassVar[type[SelectorOptions]] = SelectorOptions
    dependencies: ClassVar[tuple[str, ...]] = ()
    has_postfilter: ClassVar[bool] = False

    def __init__(self, options: SelectorOptions):
        self.options = options

    @abc.abstractmethod
    def queries(self, task: TaskProtocol) -> dict[str, float] | None:
        """Queries to look up, with their score multipliers; None to skip."""
        pass

    @abc.abstractmethod
    def finalize(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        queries: dict[str, float],
        result: AggregationResult,
    ) -> None:
        """Insert the rule symbol from the aggregated tokens."""
        pass

    def filter(self, task: TaskProtocol, rule: "ReputationRule") -> None:
        queries = self.queries(task)
        if queries is None:
            return
        rule.aggregator.aggregate(
            task, rule, queries, partial(self.finalize, task, rule, queries)
        )

    def learn_values(self, task: TaskProtocol) -> dict[str, float] | None:
        """Counter increments for the task's action, or None."""
        action = task.get_metric_action()
        if action is None:
            return None
        counter = self.options.keys_map.get(action)
        if counter is None:
            return None
        return {counter: 1.0}

    def idempotent(self, task: TaskProtocol, rule: "ReputationRule") -> None:
        if not rule.backend.writable:
            return
        values = self.learn_values(task)
        if not values:
            return
        for query in self.queries(task) or {}:
            rule.backend.set_token(task, rule, query, values)

    def postfilter(self, task: TaskProtocol, rule: "ReputationRule") -> None:
        pass


class DkimSelectorOptions(SelectorOptions):
    max_accept_adjustment: float = 2.0
    max_reject_adjustment: float = 3.0


class DkimSelector(Selector):
    """Reputation of signing domains, split by verification result."""

    type = "dkim"
    options_model = DkimSelectorOptions
    dependencies = ("DKIM_TRACE",)
    has_postfilter = True

    ACCEPT_VARIABLE = "dkim_reputation_accept"
    REJECT_VARIABLE = "dkim_reputation_reject"

    options: DkimSelectorOptions

    def queries(self, task: TaskProtocol) -> dict[str, float] | None:
        trace: dict[str, str] = task.features.get("dkim") or {}
        # <domain>.<result>, e.g. example.com.a is the reputation of valid sigs
        return {f"{domain}.{result}": 1.0 for domain, result in trace.items()}

    def finalize(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        queries: dict[str, float],
        result: AggregationResult,
    ) -> None:
        accepted = 0.0
        rejected = 0.0
        for query, values in result.values.items():
            label = query.rpartition(".")[2]
            if label == "a":
                accepted += rule.aggregator.score(values, 1.0)
            elif label == "r":
                rejected += rule.aggregator.score(values, 1.0)

        if accepted <= 0 and rejected <= 0:
            return

        if accepted > rejected:
            task.insert_result(rule.symbol, -(accepted - rejected))
        else:
            task.insert_result(rule.symbol, rejected - accepted)

        task.set_variable(self.ACCEPT_VARIABLE, str(accepted))
        task.set_variable(self.REJECT_VARIABLE, str(rejected))

    def postfilter(self, task: TaskProtocol, rule: "ReputationRule") -> None:
        for symbol, variable, max_adjustment in (
            ("R_DKIM_ALLOW", self.ACCEPT_VARIABLE, self.options.max_accept_adjustment),
            ("R_DKIM_REJECT", self.REJECT_VARIABLE, self.options.max_reject_adjustment),
        ):
            sym = task.get_symbol(symbol)
            adjustment = task.get_variable(variable)
            if sym is None or adjustment is None:
                continue
            factor = max_adjustment * math.tanh(float(adjustment))
            task.adjust_result(symbol, sym.score * factor)


class UrlSelectorOptions(SelectorOptions):
    max_urls: int = 10


class UrlSelector(Selector):
    """Reputation of the domains of URLs in the message."""

    type = "url"
    options_model = UrlSelectorOptions
    dependencies = ("SURBL_CALLBACK",)

    options: UrlSelectorOptions

    def queries(self, task: TaskProtocol) -> dict[str, float] | None:
        hits: dict[str, int] = task.features.get("url_domains") or {}
        top = sorted(hits.items(), key=lambda item: item[1], reverse=True)
        return {
            domain: float(count)
            for domain, count in top[: self.options.max_urls]
            if count > 0
        }

    def finalize(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        queries: dict[str, float],
        result: AggregationResult,
    ) -> None:
        max_hits = max((queries[query] for query in result.values), default=0.0)
        if max_hits <= 0:
            return

        score = sum(
            rule.aggregator.score(values, queries[query] / max_hits)
            for query, values in result.values.items()
        )
        if abs(score) > MIN_SCORE:
            task.insert_result(rule.symbol, score)


class IpSelectorOptions(SelectorOptions):
    scores: dict[str, float] = Field(
        default_factory=lambda: {"asn": 0.4, "country": 0.01, "ipnet": 0.5, "ip": 1.0}
    )
    asn_prefix: str = "a:"
    country_prefix: str = "c:"
    ipnet_prefix: str = "n:"
    ip_prefix: str = "i:"
    asn_cc_whitelist: list[str] = Field(default_factory=list)
    outbound: bool = False


class IpSelector(Selector):
    """Reputation of the sending IP, its network, ASN and country."""

    type = "ip"
    options_model = IpSelectorOptions

    options: IpSelectorOptions

    COMPONENTS = ("asn", "country", "ipnet", "ip")

    def _components(self, task: TaskProtocol) -> dict[str, str] | None:
        ip = task.features.get("ip") or task.get_ip()
        if not ip:
            return None
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            logger.debug(f"<{task.task_id}> invalid ip {ip!r}, skipping ip reputation")
            return None

        components = {
            name: str(task.features[name])
            for name in ("asn", "country", "ipnet")
            if task.features.get(name)
        }
        components["ip"] = str(ip)

        whitelist = self.options.asn_cc_whitelist
        if "country" in components and whitelist:
            if components["country"] in whitelist or components.get("asn") in whitelist:
                return None
        return components

    def _prefix(self, component: str) -> str:
        prefix: str = getattr(self.options, f"{component}_prefix")
        return prefix

    def queries(self, task: TaskProtocol) -> dict[str, float] | None:
        components = self._components(task)
        if components is None:
            return None
        return {
            f"{self._prefix(name)}{value}": self.options.scores.get(name, 1.0)
            for name, value in components.items()
        }

    def finalize(
        self,
        task: TaskProtocol,
        rule: "ReputationRule",
        queries: dict[str, float],
        result: AggregationResult,
    ) -> None:
        components = self._components(task) or {}
        score = 0.0
        description: list[str] = []
        for name in self.COMPONENTS:
            if name not in components:
                continue
            query = f"{self._prefix(name)}{components[name]}"
            values = result.values.get(query)
            if values is None:
                continue
            component_score = rule.aggregator.score(values, queries[query])
            score += component_score
            description.append(f"{name}: {components[name]}({component_score:.2f})")

        if abs(score) > MIN_SCORE:
            task.insert_result(rule.symbol, score, ", ".join(description))


SELECTORS: dict[str, type[Selector]] = {
    selector.type: selector for selector in (DkimSelector, UrlSelector, IpSelector)
}


def create_selector(options: dict[str, Any]) -> Selector:
    """
    Build a selector from its option mapping.

    Raises:
        KeyError: If the selector type is unknown
        pydantic.ValidationError: If the options are invalid
    """
    selector_cls = SELECTORS[options["type"]]
    return selector_cls(selector_cls.options_model.model_validate(options))


__all__ = [
    "DEFAULT_KEYS_MAP",
    "SELECTORS",
    "DkimSelector",
    "DkimSelectorOptions",
    "IpSelector",
    "IpSelectorOptions",
    "Selector",
    "SelectorOptions",
    "UrlSelector",
    "UrlSelectorOptions",
    "create_selector",
]
