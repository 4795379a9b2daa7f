# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Redis connection parameters for Redis Reputation

This module provides RedisParams, the immutable set of connection parameters
shared by every request of one logical backend, and parse_redis_server which
builds it from module or global option mappings.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .exceptions import ConfigurationError
from .protocols.upstream import HealthTrackerProtocol, ReplicaSetProtocol
from .upstream import DEFAULT_PORT, UpstreamList

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0
REDIS_SERVERS_ENV = "REDIS_SERVERS"


@dataclass(frozen=True)
class RedisParams:
    """
    Connection parameters for one logical redis backend.

    ``read_servers`` and ``write_servers`` are the same object when no
    distinct write set is configured.
    """

    read_servers: ReplicaSetProtocol
    write_servers: ReplicaSetProtocol
    timeout: float = DEFAULT_TIMEOUT
    db: str | None = None
    password: str | None = None
    prefix: str | None = None
    expand_keys: bool = False

    def all_upstreams(self) -> list[HealthTrackerProtocol]:
        """Union of read and write members, deduplicated by address."""
        seen: dict[str, HealthTrackerProtocol] = {}
        for replica_set in (self.read_servers, self.write_servers):
            for upstream in replica_set.all_members():
                seen.setdefault(upstream.address(), upstream)
        return list(seen.values())


class RedisServerOptions(BaseModel):
    """Validated redis options of a module or of the global ``redis`` section."""

    model_config = ConfigDict(extra="ignore")

    server: str | list[str] | None = None
    servers: str | list[str] | None = None
    read_servers: str | list[str] | None = None
    write_servers: str | list[str] | None = None
    timeout: float = DEFAULT_TIMEOUT
    db: str | int | None = None
    dbname: str | int | None = None
    password: str | None = None
    prefix: str | None = None
    expand_keys: bool = False

    def read_spec(self) -> str | list[str] | None:
        return self.read_servers or self.servers or self.server

    def to_params(self, default_port: int = DEFAULT_PORT) -> RedisParams | None:
        read_spec = self.read_spec()
        if not read_spec:
            return None

        read = UpstreamList.parse(read_spec, default_port)
        write = (
            UpstreamList.parse(self.write_servers, default_port)
            if self.write_servers
            else read
        )
        db = self.db if self.db is not None else self.dbname
        return RedisParams(
            read_servers=read,
            write_servers=write,
            timeout=self.timeout,
            db=str(db) if db is not None else None,
            password=self.password,
            prefix=self.prefix,
            expand_keys=self.expand_keys,
        )


def _try_options(opts: Any, where: str) -> RedisParams | None:
    if not isinstance(opts, Mapping):
        return None
    try:
        options = RedisServerOptions.model_validate(dict(opts))
    except ValidationError as e:
        raise ConfigurationError(f"invalid redis options in {where}: {e}") from e
    return options.to_params()


def parse_redis_server(
    module_name: str,
    module_opts: Mapping[str, Any] | None = None,
    global_opts: Mapping[str, Any] | None = None,
    no_fallback: bool = False,
) -> RedisParams | None:
    """
    Build RedisParams for a module.

    Lookup order:
        1. ``module_opts["redis"]``
        2. ``module_opts`` itself
        3. ``global_opts[module_name]`` if present, else ``global_opts``
           (unless the module is listed in ``disabled_modules``)
        4. The REDIS_SERVERS environment variable

    Steps 3 and 4 are skipped when ``no_fallback`` is set.

    Returns:
        RedisParams, or None if no servers are configured for the module.

    Raises:
        ConfigurationError: If an options section is malformed.
    """
    if module_opts:
        for opts, where in (
            (module_opts.get("redis"), f"{module_name}.redis"),
            (module_opts, module_name),
        ):
            params = _try_options(opts, where)
            if params is not None:
                return params

    if no_fallback:
        return None

    if global_opts:
        if isinstance(global_opts.get(module_name), Mapping):
            params = _try_options(global_opts[module_name], f"redis.{module_name}")
            if params is not None:
                return params
        else:
            if module_name in (global_opts.get("disabled_modules") or ()):
                logger.info(
                    f"NOT using default redis server for module {module_name}: "
                    "it is disabled"
                )
                return None
            params = _try_options(global_opts, "redis")
            if params is not None:
                logger.info(f"using default redis server for module {module_name}")
                return params

    env_servers = os.environ.get(REDIS_SERVERS_ENV)
    if env_servers:
        logger.info(
            f"using {REDIS_SERVERS_ENV} environment variable for module {module_name}"
        )
        return _try_options({"servers": env_servers}, REDIS_SERVERS_ENV)

    return None


__all__ = [
    "DEFAULT_TIMEOUT",
    "REDIS_SERVERS_ENV",
    "RedisParams",
    "RedisServerOptions",
    "parse_redis_server",
]
