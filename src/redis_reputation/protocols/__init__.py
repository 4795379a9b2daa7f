# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Protocol definitions for collaborators consumed by the library."""

from .resolver import ResolverCallback, ResolverProtocol
from .task import TaskProtocol
from .transport import TransportCallback, TransportProtocol, TransportRequest
from .upstream import HealthTrackerProtocol, ReplicaSetProtocol

__all__ = [
    "HealthTrackerProtocol",
    "ReplicaSetProtocol",
    "ResolverCallback",
    "ResolverProtocol",
    "TaskProtocol",
    "TransportCallback",
    "TransportProtocol",
    "TransportRequest",
]
