"""Core building blocks - config, errors, results, probing."""

from remotepool.core.config import Config, get_config
from remotepool.core.result import Result
from remotepool.core.probe import port_open, host_type

__all__ = [
    "Config",
    "get_config",
    "Result",
    "port_open",
    "host_type",
]
