"""Grid store: durable mapping from cell coordinate to current occupant.

Writes are upserts keyed by ``(x, y)``; the last committed write wins.
"""

from collections import Counter
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from gridplace.schemas.types import Bounds, Cell
from gridplace.utils.errors import RegionTooLargeError
from gridplace.utils.telemetry import get_logger

DEFAULT_MAX_REGION_SPAN = 10_000


class GridStore(Protocol):
    """Capability interface shared by the durable stores and the cache."""

    async def put(
        self, x: int, y: int, color: str, writer_id: str, now: int
    ) -> None: ...

    async def get(self, x: int, y: int) -> Cell | None: ...

    async def get_range(self, bounds: Bounds) -> list[Cell]: ...

    async def count(self) -> int: ...

    async def bounds(self) -> Bounds | None: ...

    async def all_cells(self) -> list[Cell]: ...

    async def counts_by_writer(self) -> dict[str, int]: ...


class GridBackend(GridStore, Protocol):
    """A durable grid store with an explicit lifecycle."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...


def check_region(bounds: Bounds, max_span: int) -> None:
    """Reject regions wider or taller than ``max_span``.

    Raises:
        RegionTooLargeError: If either side exceeds the limit
    """
    width = bounds["max_x"] - bounds["min_x"]
    height = bounds["max_y"] - bounds["min_y"]
    if width > max_span or height > max_span:
        raise RegionTooLargeError(width, height, max_span)


def in_bounds(cell: Cell, bounds: Bounds) -> bool:
    return (
        bounds["min_x"] <= cell["x"] <= bounds["max_x"]
        and bounds["min_y"] <= cell["y"] <= bounds["max_y"]
    )


def _cell_from_row(row: Any) -> Cell:
    return {
        "x": int(row[0]),
        "y": int(row[1]),
        "color": row[2],
        "writer_id": row[3],
        "written_at": int(row[4]),
    }


class SqliteGridStore:
    """SQLite-backed grid store."""

    _COLUMNS = "x, y, color, writer_id, written_at"

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        max_region_span: int = DEFAULT_MAX_REGION_SPAN,
    ):
        """Initialize the grid store.

        Args:
            db_path: Path to SQLite database file (":memory:" for in-memory)
            max_region_span: Largest width/height accepted by ``get_range``
        """
        self.db_path = str(db_path)
        self.max_region_span = max_region_span
        self._db: aiosqlite.Connection | None = None
        self._logger = get_logger("gridplace.storage.grid")

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)

        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS cells (
                x INTEGER NOT NULL,
                y INTEGER NOT NULL,
                color TEXT NOT NULL,
                writer_id TEXT NOT NULL,
                written_at INTEGER NOT NULL,
                PRIMARY KEY (x, y)
            )
        """
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_cells_writer ON cells(writer_id)"
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_cells_written_at ON cells(written_at)"
        )

        self._logger.info("Grid store initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
        self._logger.info("Grid store closed")

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Grid store not initialized")
        return self._db

    async def put(self, x: int, y: int, color: str, writer_id: str, now: int) -> None:
        await self._conn().execute(
            f"""
            INSERT INTO cells ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(x, y) DO UPDATE SET
                color = excluded.color,
                writer_id = excluded.writer_id,
                written_at = excluded.written_at
            """,
            (x, y, color, writer_id, now),
        )

    async def get(self, x: int, y: int) -> Cell | None:
        async with self._conn().execute(
            f"SELECT {self._COLUMNS} FROM cells WHERE x = ? AND y = ?", (x, y)
        ) as cursor:
            row = await cursor.fetchone()
        return _cell_from_row(row) if row else None

    async def get_range(self, bounds: Bounds) -> list[Cell]:
        check_region(bounds, self.max_region_span)
        async with self._conn().execute(
            f"""
            SELECT {self._COLUMNS} FROM cells
            WHERE x >= ? AND x <= ? AND y >= ? AND y <= ?
            """,
            (bounds["min_x"], bounds["max_x"], bounds["min_y"], bounds["max_y"]),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_cell_from_row(r) for r in rows]

    async def count(self) -> int:
        async with self._conn().execute("SELECT COUNT(*) FROM cells") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def bounds(self) -> Bounds | None:
        async with self._conn().execute(
            "SELECT MIN(x), MAX(x), MIN(y), MAX(y) FROM cells"
        ) as cursor:
            row = await cursor.fetchone()
        if not row or row[0] is None:
            return None
        return {
            "min_x": int(row[0]),
            "max_x": int(row[1]),
            "min_y": int(row[2]),
            "max_y": int(row[3]),
        }

    async def all_cells(self) -> list[Cell]:
        async with self._conn().execute(
            f"SELECT {self._COLUMNS} FROM cells"
        ) as cursor:
            rows = await cursor.fetchall()
        return [_cell_from_row(r) for r in rows]

    async def counts_by_writer(self) -> dict[str, int]:
        async with self._conn().execute(
            "SELECT writer_id, COUNT(*) FROM cells GROUP BY writer_id"
        ) as cursor:
            rows = await cursor.fetchall()
        return {r[0]: int(r[1]) for r in rows}

    async def __aenter__(self) -> "SqliteGridStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class InMemoryGridStore:
    """Dictionary-backed grid store; the trivial test double."""

    def __init__(self, max_region_span: int = DEFAULT_MAX_REGION_SPAN):
        self.max_region_span = max_region_span
        self._cells: dict[tuple[int, int], Cell] = {}

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def put(self, x: int, y: int, color: str, writer_id: str, now: int) -> None:
        self._cells[(x, y)] = {
            "x": x,
            "y": y,
            "color": color,
            "writer_id": writer_id,
            "written_at": now,
        }

    async def get(self, x: int, y: int) -> Cell | None:
        cell = self._cells.get((x, y))
        return Cell(**cell) if cell else None

    async def get_range(self, bounds: Bounds) -> list[Cell]:
        check_region(bounds, self.max_region_span)
        return [Cell(**c) for c in self._cells.values() if in_bounds(c, bounds)]

    async def count(self) -> int:
        return len(self._cells)

    async def bounds(self) -> Bounds | None:
        if not self._cells:
            return None
        xs = [x for x, _ in self._cells]
        ys = [y for _, y in self._cells]
        return {"min_x": min(xs), "max_x": max(xs), "min_y": min(ys), "max_y": max(ys)}

    async def all_cells(self) -> list[Cell]:
        return [Cell(**c) for c in self._cells.values()]

    async def counts_by_writer(self) -> dict[str, int]:
        return dict(Counter(c["writer_id"] for c in self._cells.values()))
