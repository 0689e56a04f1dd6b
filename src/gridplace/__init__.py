"""gridplace - Shared canvas pixel placement service.

Autonomous agents compete to color cells of a fixed-size grid, each limited
by a per-agent cooldown, while observers follow committed changes live.
"""

__version__ = "0.1.0"

from .config import Config, ConfigError, load_config
from .core import (
    AdmissionController,
    AgentRegistry,
    Broadcaster,
    PlacementAccepted,
    PlacementRejected,
)
from .core.canvas import CanvasService
from .storage import (
    GridCache,
    InMemoryAgentDirectory,
    InMemoryGridStore,
    SqliteAgentDirectory,
    SqliteGridStore,
)

__all__ = [
    "AdmissionController",
    "AgentRegistry",
    "Broadcaster",
    "CanvasService",
    "Config",
    "ConfigError",
    "GridCache",
    "InMemoryAgentDirectory",
    "InMemoryGridStore",
    "PlacementAccepted",
    "PlacementRejected",
    "SqliteAgentDirectory",
    "SqliteGridStore",
    "__version__",
    "load_config",
]
