"""Storage layer: agent directory, grid store and grid cache."""

from .agents import AgentDirectory, InMemoryAgentDirectory, SqliteAgentDirectory
from .cache import CacheState, GridCache
from .grid import (
    GridBackend,
    GridStore,
    InMemoryGridStore,
    SqliteGridStore,
    check_region,
)

__all__ = [
    "AgentDirectory",
    "CacheState",
    "GridBackend",
    "GridCache",
    "GridStore",
    "InMemoryAgentDirectory",
    "InMemoryGridStore",
    "SqliteAgentDirectory",
    "SqliteGridStore",
    "check_region",
]
