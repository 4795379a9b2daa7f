# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Reputation rules.

A rule binds a selector (what to look up) to a backend (where to look it up)
under one symbol name. Rules are built from the ``reputation`` module
options:

    {
        "rules": {
            "IP_REPUTATION": {
                "selector": {"type": "ip"},
                "backend": {"type": "redis", "hashed": True},
            },
            "DKIM_REPUTATION": {
                "selector": {"type": "dkim"},
                "backend": {"type": "dns", "list": "rep.example.com"},
            },
        }
    }

Invalid rule definitions are logged and skipped.
"""

import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .aggregation import ScoreFunc, TokenAggregator
from .backends.base import TokenBackend
from .backends.dns import DnsTokenBackend, DnsTokenBackendOptions
from .backends.redis import RedisTokenBackend, RedisTokenBackendOptions
from .config import RedisParams, parse_redis_server
from .dispatcher import RedisDispatcher
from .exceptions import ConfigurationError
from .protocols.resolver import ResolverProtocol
from .protocols.task import TaskProtocol
from .selectors import SELECTORS, Selector, create_selector

logger = logging.getLogger(__name__)

MODULE_NAME = "reputation"

IpNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class RuleOptions(BaseModel):
    """Options of one rule."""

    model_config = ConfigDict(extra="ignore")

    selector: dict[str, Any]
    backend: dict[str, Any]
    symbol: str | None = None
    whitelisted_ip: list[str] = Field(default_factory=list)


@dataclass
class ReputationRule:
    """A configured reputation rule."""

    name: str
    symbol: str
    selector: Selector
    backend: TokenBackend
    aggregator: TokenAggregator
    whitelisted_networks: list[IpNetwork] = field(default_factory=list)

    @property
    def symbols(self) -> list[str]:
        """Symbols to register: filter, then postfilter and idempotent parts."""
        names = [self.symbol]
        if self.selector.has_postfilter:
            names.append(f"{self.symbol}_POST")
        names.append(f"{self.symbol}_IDEMPOTENT")
        return names

    def is_applicable(self, task: TaskProtocol) -> bool:
        options = self.selector.options
        if not (options.outbound and options.inbound):
            outbound = bool(task.get_user()) or task.is_local_ip()
            if options.outbound and not outbound:
                return False
            if options.inbound and outbound:
                return False

        ip = task.get_ip()
        if ip and self.whitelisted_networks:
            try:
                address = ipaddress.ip_address(ip)
            except ValueError:
                return True
            if any(address in network for network in self.whitelisted_networks):
                return False
        return True

    def filter(self, task: TaskProtocol) -> None:
        if self.is_applicable(task):
            self.selector.filter(task, self)

    def postfilter(self, task: TaskProtocol) -> None:
        if self.is_applicable(task):
            self.selector.postfilter(task, self)

    def idempotent(self, task: TaskProtocol) -> None:
        if self.is_applicable(task):
            self.selector.idempotent(task, self)


def _create_backend(
    options: dict[str, Any],
    dispatcher: RedisDispatcher | None,
    params: RedisParams | None,
    resolver: ResolverProtocol | None,
) -> TokenBackend:
    backend_type = options.get("type")
    if backend_type == "redis":
        if dispatcher is None or params is None:
            raise ConfigurationError("redis backend requires configured redis servers")
        return RedisTokenBackend(
            RedisTokenBackendOptions.model_validate(options), dispatcher, params
        )
    if backend_type == "dns":
        if resolver is None:
            raise ConfigurationError("dns backend requires a resolver")
        return DnsTokenBackend(DnsTokenBackendOptions.model_validate(options), resolver)
    raise ConfigurationError(f"unknown backend: {backend_type}")


def parse_rule(
    name: str,
    options: Mapping[str, Any],
    *,
    dispatcher: RedisDispatcher | None = None,
    params: RedisParams | None = None,
    resolver: ResolverProtocol | None = None,
    score_func: ScoreFunc | None = None,
) -> ReputationRule | None:
    """
    Build one rule; logs and returns None if the definition is invalid.
    """
    try:
        rule_options = RuleOptions.model_validate(dict(options))
    except ValidationError as e:
        logger.error(f"invalid definition of rule {name}: {e}")
        return None

    selector_type = rule_options.selector.get("type")
    if selector_type not in SELECTORS:
        logger.error(f"unknown selector defined for rule {name}: {selector_type}")
        return None
    if not rule_options.backend.get("type"):
        logger.error(f"no backend defined for rule {name}")
        return None

    try:
        selector = create_selector(rule_options.selector)
        backend = _create_backend(rule_options.backend, dispatcher, params, resolver)
        networks = [
            ipaddress.ip_network(net, strict=False)
            for net in rule_options.whitelisted_ip
        ]
    except (ConfigurationError, ValidationError, ValueError) as e:
        logger.error(f"cannot configure rule {name}: {e}")
        return None

    return ReputationRule(
        name=name,
        symbol=rule_options.symbol or name,
        selector=selector,
        backend=backend,
        aggregator=TokenAggregator(
            backend, score_func=score_func, lower_bound=selector.options.lower_bound
        ),
        whitelisted_networks=networks,
    )


def load_rules(
    module_opts: Mapping[str, Any] | None,
    *,
    dispatcher: RedisDispatcher | None = None,
    resolver: ResolverProtocol | None = None,
    global_opts: Mapping[str, Any] | None = None,
) -> list[ReputationRule]:
    """
    Build every rule of the reputation module.

    Redis parameters are resolved with parse_redis_server for the
    ``reputation`` module, falling back to ``global_opts``.
    """
    if not module_opts:
        logger.info("Module is unconfigured")
        return []

    rules_opts = module_opts.get("rules")
    if not rules_opts:
        logger.info(f"no rules defined, {MODULE_NAME} module is disabled")
        return []

    params = parse_redis_server(MODULE_NAME, module_opts, global_opts)

    rules: list[ReputationRule] = []
    for name, rule_opts in rules_opts.items():
        if not ((rule_opts or {}).get("selector") or {}).get("type"):
            logger.error(f"no selector defined for rule {name}")
            continue
        rule = parse_rule(
            name, rule_opts, dispatcher=dispatcher, params=params, resolver=resolver
        )
        if rule is not None:
            rules.append(rule)
    return rules


__all__ = [
    "MODULE_NAME",
    "ReputationRule",
    "RuleOptions",
    "load_rules",
    "parse_rule",
]
