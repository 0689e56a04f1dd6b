"""Process-local read-through mirror of a grid store.

The cache moves through ``UNLOADED -> LOADING -> LOADED``. The first read
starts a single bulk load; every caller that arrives while it runs awaits
the same task instead of starting another one.
"""

import asyncio
from enum import Enum

from gridplace.schemas.types import Bounds, Cell
from gridplace.storage.grid import (
    DEFAULT_MAX_REGION_SPAN,
    GridStore,
    check_region,
    in_bounds,
)
from gridplace.utils.telemetry import get_logger, record_cache_load


class CacheState(Enum):
    """Load state of a GridCache."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class GridCache:
    """Read-through cache implementing the GridStore interface.

    Writes go to the backing store first, then update the cache in place
    without re-reading. A write that lands while the cache is UNLOADED only
    reaches the store and is picked up by the first load. A write that lands
    while a load is in flight is queued and replayed once the snapshot is in,
    since the snapshot may or may not include it.

    ``put`` is the only code path that mutates the cached cells.
    """

    def __init__(
        self, store: GridStore, max_region_span: int = DEFAULT_MAX_REGION_SPAN
    ):
        """Initialize the cache.

        Args:
            store: Backing grid store
            max_region_span: Largest width/height accepted by ``get_range``
        """
        self._store = store
        self.max_region_span = max_region_span

        self._cells: dict[tuple[int, int], Cell] = {}
        self._bounds: Bounds | None = None
        self._state = CacheState.UNLOADED
        self._load_task: asyncio.Task[None] | None = None
        self._load_lock = asyncio.Lock()
        self._pending: list[Cell] = []
        self.load_count = 0

        self._logger = get_logger("gridplace.storage.cache")

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def store(self) -> GridStore:
        return self._store

    async def ensure_loaded(self) -> None:
        """Load the cache if needed, joining an in-flight load if one exists.

        Raises:
            Exception: Whatever the backing store raised; the cache returns
                to UNLOADED so the next caller retries
        """
        if self._state is CacheState.LOADED:
            return

        async with self._load_lock:
            if self._state is CacheState.LOADED:
                return
            if self._load_task is None:
                self._state = CacheState.LOADING
                self._load_task = asyncio.create_task(self._load())
            task = self._load_task

        # A cancelled waiter must not cancel the load other callers share
        await asyncio.shield(task)

    async def _load(self) -> None:
        self._logger.info("Loading grid cache")
        try:
            cells = await self._store.all_cells()
        except Exception as e:
            self._logger.error(
                "Grid cache load failed", error=str(e), error_type=type(e).__name__
            )
            self._state = CacheState.UNLOADED
            self._load_task = None
            self._pending.clear()
            raise

        self._cells = {}
        self._bounds = None
        for cell in cells:
            self._apply(cell)

        replayed = len(self._pending)
        for cell in self._pending:
            self._apply(cell)
        self._pending.clear()

        self._state = CacheState.LOADED
        self._load_task = None
        self.load_count += 1
        record_cache_load()

        self._logger.info(
            "Grid cache loaded", cell_count=len(self._cells), replayed=replayed
        )

    def _apply(self, cell: Cell) -> None:
        x, y = cell["x"], cell["y"]
        self._cells[(x, y)] = cell

        # Cells are never deleted, so bounds only ever grow
        if self._bounds is None:
            self._bounds = {"min_x": x, "max_x": x, "min_y": y, "max_y": y}
        else:
            b = self._bounds
            b["min_x"] = min(b["min_x"], x)
            b["max_x"] = max(b["max_x"], x)
            b["min_y"] = min(b["min_y"], y)
            b["max_y"] = max(b["max_y"], y)

    async def put(self, x: int, y: int, color: str, writer_id: str, now: int) -> None:
        await self._store.put(x, y, color, writer_id, now)

        cell: Cell = {
            "x": x,
            "y": y,
            "color": color,
            "writer_id": writer_id,
            "written_at": now,
        }
        if self._state is CacheState.LOADED:
            self._apply(cell)
        elif self._state is CacheState.LOADING:
            self._pending.append(cell)

    async def get(self, x: int, y: int) -> Cell | None:
        await self.ensure_loaded()
        cell = self._cells.get((x, y))
        return Cell(**cell) if cell else None

    async def get_range(self, bounds: Bounds) -> list[Cell]:
        check_region(bounds, self.max_region_span)
        await self.ensure_loaded()
        return [Cell(**c) for c in self._cells.values() if in_bounds(c, bounds)]

    async def count(self) -> int:
        await self.ensure_loaded()
        return len(self._cells)

    async def bounds(self) -> Bounds | None:
        await self.ensure_loaded()
        return Bounds(**self._bounds) if self._bounds else None

    async def all_cells(self) -> list[Cell]:
        await self.ensure_loaded()
        return [Cell(**c) for c in self._cells.values()]

    async def counts_by_writer(self) -> dict[str, int]:
        await self.ensure_loaded()
        counts: dict[str, int] = {}
        for cell in self._cells.values():
            counts[cell["writer_id"]] = counts.get(cell["writer_id"], 0) + 1
        return counts

