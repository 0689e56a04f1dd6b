"""Process-wide canvas service.

Owns the single instances of the directory, grid store, cache, broadcaster,
activity log, registry and admission controller, and gives them an explicit
lifecycle. Request handlers receive the service; nothing here is a module
level singleton.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

from gridplace.config import Config
from gridplace.core.activity import ActivityLog
from gridplace.core.admission import AdmissionController
from gridplace.core.broadcaster import Broadcaster
from gridplace.core.registry import AgentRegistry
from gridplace.schemas.types import Bounds, Cell
from gridplace.storage.agents import (
    AgentDirectory,
    InMemoryAgentDirectory,
    SqliteAgentDirectory,
)
from gridplace.storage.cache import GridCache
from gridplace.storage.grid import GridBackend, InMemoryGridStore, SqliteGridStore
from gridplace.utils.telemetry import get_logger, now_ms


class CanvasService:
    """Wires the components together from a Config."""

    def __init__(
        self,
        config: Config | None = None,
        clock: Callable[[], int] = now_ms,
        directory: AgentDirectory | None = None,
        store: GridBackend | None = None,
    ):
        """Initialize the service.

        Args:
            config: Service configuration (defaults if None)
            clock: Millisecond clock shared by every component
            directory: Directory override; built from ``config.storage`` if None
            store: Grid store override; built from ``config.storage`` if None
        """
        self.config = config or Config()
        self._clock = clock
        self._logger = get_logger("gridplace.canvas")

        canvas = self.config.canvas
        self.palette: tuple[str, ...] = tuple(canvas.palette)

        if directory is None or store is None:
            built_directory, built_store = self._build_backends()
            directory = directory or built_directory
            store = store or built_store
        self.directory = directory
        self.store = store
        self.cache = GridCache(store, max_region_span=canvas.max_region_span)

        bc = self.config.broadcaster
        self.broadcaster = Broadcaster(
            max_connections=bc.max_connections,
            max_per_origin=bc.max_per_origin,
            max_lifetime_seconds=bc.max_lifetime_seconds,
            ping_interval_seconds=bc.ping_interval_seconds,
            queue_size=bc.queue_size,
            clock=clock,
        )
        self.activity = ActivityLog(self.config.activity.size)
        self.registry = AgentRegistry(self.directory, self.palette, clock=clock)
        self.controller = AdmissionController(
            self.directory,
            self.cache,
            self.broadcaster,
            grid_size=canvas.grid_size,
            cooldown_ms=canvas.cooldown_ms,
            palette=self.palette,
            activity=self.activity,
            clock=clock,
        )

        self._initialized = False

    def _build_backends(self) -> tuple[AgentDirectory, GridBackend]:
        storage = self.config.storage
        span = self.config.canvas.max_region_span
        if storage.backend == "memory":
            return InMemoryAgentDirectory(), InMemoryGridStore(max_region_span=span)

        path = Path(storage.path)
        return SqliteAgentDirectory(path), SqliteGridStore(path, max_region_span=span)

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Open storage, warm the cache and start the broadcaster."""
        if self._initialized:
            return

        await self.directory.initialize()
        await self.store.initialize()
        await self.cache.ensure_loaded()
        await self.broadcaster.start()

        self._initialized = True
        self._logger.info(
            "Canvas service initialized",
            backend=self.config.storage.backend,
            grid_size=self.config.canvas.grid_size,
            cooldown_ms=self.config.canvas.cooldown_ms,
        )

    async def shutdown(self) -> None:
        """Stop the broadcaster and close storage."""
        if not self._initialized:
            return

        await self.broadcaster.shutdown()
        await self.directory.close()
        await self.store.close()

        self._initialized = False
        self._logger.info("Canvas service shut down")

    async def canvas(self, bounds: Bounds | None = None) -> list[Cell]:
        """Export the canvas, or the given region of it.

        Raises:
            RegionTooLargeError: If the region exceeds the maximum span
        """
        if bounds is None:
            return await self.cache.all_cells()
        return await self.cache.get_range(bounds)

    async def stats(self) -> dict[str, Any]:
        return {
            "cell_count": await self.cache.count(),
            "agent_count": await self.directory.count(),
            "viewers": self.broadcaster.count(),
            "bounds": await self.cache.bounds(),
            "grid_size": self.config.canvas.grid_size,
            "cooldown_ms": self.config.canvas.cooldown_ms,
            "palette": list(self.palette),
            "timestamp": self._clock(),
        }

    async def __aenter__(self) -> "CanvasService":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()
