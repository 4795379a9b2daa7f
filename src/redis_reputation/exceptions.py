# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the redis reputation library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from ReputationError, making it easy to catch
all library-related exceptions with a single except clause.

Callback-style APIs never raise these for remote failures; they deliver the
exception instance in the ``err`` slot of the callback instead. The awaitable
wrappers raise whatever was delivered.
"""

from redis.exceptions import NoScriptError


class ReputationError(Exception):
    """Base exception for all redis reputation errors.

    Example:
        try:
            values = await backend.get_token_async(task, rule, "example.com")
        except ReputationError as e:
            logger.error(f"Reputation lookup failed: {e}")
    """

    pass


class ConfigurationError(ReputationError):
    """Raised when configuration is invalid.

    Common causes include:
    - No servers configured for a module that requires redis
    - A DNS backend without a ``list`` zone
    - Unknown selector or backend type in a rule definition
    """

    pass


class DispatchError(ReputationError):
    """Raised when a request could not be handed to the transport.

    Covers both missing required parameters and transport-level rejection.
    No request reached the server when this is raised.
    """

    pass


class RoutingError(DispatchError):
    """Raised when no server can be selected from a replica set."""

    pass


class DecodeError(ReputationError):
    """Raised when a reply has an unexpected shape.

    Attributes:
        key: The key whose reply could not be decoded.
    """

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class ScriptNotLoadedError(ReputationError):
    """Raised when a registered script has no usable hash on the servers.

    Delivered to task-bound callers that invoke a script before the startup
    load finished, and to callers whose reload cycle failed on every server.
    """

    def __init__(self, script_id: int, message: str | None = None):
        super().__init__(message or f"NOSCRIPT: script {script_id} is not available")
        self.script_id = script_id


class ScriptNotFoundError(ReputationError):
    """Raised when a script id was never registered."""

    def __init__(self, script_id: int):
        super().__init__(f"cannot find registered script with id {script_id}")
        self.script_id = script_id


class NameNotFoundError(ReputationError):
    """Signalled by resolvers when the requested DNS name does not exist."""

    pass


def is_noscript_error(err: BaseException | None) -> bool:
    """Return True if ``err`` means the server no longer knows a script hash."""
    if err is None:
        return False
    if isinstance(err, NoScriptError):
        return True
    return str(err).startswith("NOSCRIPT")
