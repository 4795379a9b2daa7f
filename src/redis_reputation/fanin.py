# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Fan-in join for callback-driven operations.

A FanIn is created with the number of operations it waits for. Each
operation reports once; the completion callback runs exactly once, when the
last report arrives. With zero expected operations it runs immediately.

All reports must come from the same event loop thread: increment and compare
happen without any await in between.
"""

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class FanIn:
    """
    Counts completions and fires ``on_complete`` once all have arrived.

    Example:
        join = FanIn(len(queries), finalize)
        for query in queries:
            done = join.slot()
            backend.get_token(task, rule, query, lambda err, key, values: done())
    """

    def __init__(self, expected: int, on_complete: Callable[[], None]) -> None:
        if expected < 0:
            raise ValueError(f"expected must be >= 0, got {expected}")
        self.expected = expected
        self.received = 0
        self._on_complete = on_complete
        self._finished = False

        if expected == 0:
            self._finish()

    @property
    def pending(self) -> int:
        return self.expected - self.received

    @property
    def finished(self) -> bool:
        return self._finished

    def report(self) -> None:
        """Record one completion."""
        if self._finished:
            logger.warning(
                f"completion reported after fan-in of {self.expected} finished, ignored"
            )
            return

        self.received += 1
        if self.received == self.expected:
            self._finish()

    def slot(self) -> Callable[[], None]:
        """A reporter that counts only its first call."""
        used = False

        def _report() -> None:
            nonlocal used
            if used:
                return
            used = True
            self.report()

        return _report

    def _finish(self) -> None:
        self._finished = True
        self._on_complete()


__all__ = ["FanIn"]
