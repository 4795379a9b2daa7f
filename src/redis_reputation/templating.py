# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Key templating.

Expands ``{{field}}`` placeholders in key arguments with values derived from
the message being processed, e.g. ``"rate:{{from_domain}}"``.

Fields are computed lazily, at most once per context, from the task
metadata. A field that cannot be derived (missing input, unknown name)
renders as an empty string.
"""

import re
from collections.abc import Callable
from typing import Any

from .protocols.task import TaskProtocol

Derivation = Callable[[TaskProtocol], str | None]
TldFunc = Callable[[str], str | None]

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")


def registered_domain(domain: str) -> str | None:
    """
    Effective second-level domain: the last two labels of ``domain``.

    This is not public-suffix aware: ``mail.example.co.uk`` yields ``co.uk``,
    so every sender under a multi-label suffix shares one templated key.
    Deployments keying on such domains should pass a public-suffix aware
    ``tld_func`` to RedisDispatcher.
    """
    labels = [label for label in domain.lower().rstrip(".").split(".") if label]
    if not labels:
        return None
    return ".".join(labels[-2:])


def _smtp_from(task: TaskProtocol) -> str | None:
    addr = task.get_from("smtp")
    return addr.addr if addr else None


def _smtp_from_domain(task: TaskProtocol) -> str | None:
    addr = task.get_from("smtp")
    return addr.domain if addr else None


def _mime_from(task: TaskProtocol) -> str | None:
    addr = task.get_from("mime")
    return addr.addr if addr else None


def _mime_from_domain(task: TaskProtocol) -> str | None:
    addr = task.get_from("mime")
    return addr.domain if addr else None


def _from_domain_or_helo_domain(task: TaskProtocol) -> str | None:
    domain = _smtp_from_domain(task)
    if domain:
        return domain
    return task.get_helo()


def _principal_recipient_domain(task: TaskProtocol) -> str | None:
    rcpt = task.get_principal_recipient()
    if not rcpt or "@" not in rcpt:
        return None
    return rcpt.rpartition("@")[2]


DERIVATIONS: dict[str, Derivation] = {
    "principal_recipient": lambda task: task.get_principal_recipient(),
    "principal_recipient_domain": _principal_recipient_domain,
    "ip": lambda task: task.get_ip(),
    "from": _smtp_from,
    "from_domain": _smtp_from_domain,
    "from_domain_or_helo_domain": _from_domain_or_helo_domain,
    "mime_from": _mime_from,
    "mime_from_domain": _mime_from_domain,
}
DERIVATIONS["smtp_from"] = DERIVATIONS["from"]
DERIVATIONS["smtp_from_domain"] = DERIVATIONS["from_domain"]
DERIVATIONS["smtp_from_domain_or_helo_domain"] = DERIVATIONS[
    "from_domain_or_helo_domain"
]

# esld_<field> applies tld_func to the domain field of the same name
ESLD_SOURCES: dict[str, str] = {
    "esld_principal_recipient_domain": "principal_recipient_domain",
    "esld_from_domain": "from_domain",
    "esld_smtp_from_domain": "from_domain",
    "esld_mime_from_domain": "mime_from_domain",
    "esld_from_domain_or_helo_domain": "from_domain_or_helo_domain",
    "esld_smtp_from_domain_or_helo_domain": "from_domain_or_helo_domain",
}


class KeyExpansionContext:
    """
    Lazily computed, memoized metadata of one task.

    ``task`` may be None for task-less requests; every field is then absent.
    """

    def __init__(
        self, task: TaskProtocol | None, tld_func: TldFunc = registered_domain
    ) -> None:
        self._task = task
        self._tld_func = tld_func
        self._cache: dict[str, str | None] = {}

    def get(self, field: str) -> str | None:
        name = field.lower()
        if name in self._cache:
            return self._cache[name]

        value = self._derive(name)
        self._cache[name] = value
        return value

    def _derive(self, name: str) -> str | None:
        if self._task is None:
            return None
        derivation = DERIVATIONS.get(name)
        if derivation is not None:
            return derivation(self._task)
        source = ESLD_SOURCES.get(name)
        if source is not None:
            domain = self.get(source)
            return self._tld_func(domain) if domain else None
        return None

    @property
    def computed(self) -> dict[str, str | None]:
        """Fields computed so far."""
        return dict(self._cache)


def expand_template(template: Any, context: KeyExpansionContext) -> Any:
    """
    Replace ``{{field}}`` placeholders in ``template``.

    Non-string arguments are returned unchanged. Absent fields render empty.
    """
    if not isinstance(template, str) or "{{" not in template:
        return template

    def _replace(match: re.Match[str]) -> str:
        value = context.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


__all__ = [
    "DERIVATIONS",
    "ESLD_SOURCES",
    "KeyExpansionContext",
    "expand_template",
    "registered_domain",
]
