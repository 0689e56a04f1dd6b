"""Agent directory: durable record of registered agents.

The directory owns the only write path to ``last_write_at``: the atomic
``try_admit`` conditional update used by the admission controller.
"""

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from gridplace.schemas.types import AgentRecord, PublicAgent
from gridplace.utils.errors import DuplicateCredentialError
from gridplace.utils.telemetry import get_logger


class AgentDirectory(Protocol):
    """Capability interface implemented by every directory backend."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def create(
        self, agent_id: str, name: str, credential: str, color: str, now: int
    ) -> None: ...

    async def find_by_credential(self, credential: str) -> AgentRecord | None: ...

    async def find_by_id(self, agent_id: str) -> AgentRecord | None: ...

    async def list_agents(self) -> list[PublicAgent]: ...

    async def try_admit(self, agent_id: str, now: int, cooldown_ms: int) -> bool: ...

    async def time_until_eligible(
        self, agent_id: str, now: int, cooldown_ms: int
    ) -> int: ...

    async def count(self) -> int: ...


def remaining_cooldown(last_write_at: int | None, now: int, cooldown_ms: int) -> int:
    """Milliseconds until an agent that last wrote at ``last_write_at`` may write."""
    if last_write_at is None:
        return 0
    return max(0, cooldown_ms - (now - last_write_at))


class SqliteAgentDirectory:
    """SQLite-backed agent directory.

    The connection runs in autocommit mode, so every statement is its own
    transaction and the conditional update in ``try_admit`` is atomic per
    row without any application-level lock.
    """

    _COLUMNS = "id, name, credential, color, created_at, last_write_at"

    def __init__(self, db_path: str | Path = ":memory:"):
        """Initialize the directory.

        Args:
            db_path: Path to SQLite database file (":memory:" for in-memory)
        """
        self.db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None
        self._logger = get_logger("gridplace.storage.agents")

    async def initialize(self) -> None:
        """Open the connection and create the schema."""
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)

        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS agents (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                credential TEXT NOT NULL UNIQUE,
                color TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                last_write_at INTEGER
            )
        """
        )

        self._logger.info("Agent directory initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
        self._logger.info("Agent directory closed")

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Agent directory not initialized")
        return self._db

    async def create(
        self, agent_id: str, name: str, credential: str, color: str, now: int
    ) -> None:
        """Insert a new agent with no recorded write.

        Raises:
            DuplicateCredentialError: If the credential already exists
        """
        try:
            await self._conn().execute(
                f"INSERT INTO agents ({self._COLUMNS}) VALUES (?, ?, ?, ?, ?, NULL)",
                (agent_id, name, credential, color, now),
            )
        except sqlite3.IntegrityError as e:
            if "credential" in str(e):
                raise DuplicateCredentialError() from e
            raise

        self._logger.info("Agent created", agent_id=agent_id, name=name)

    async def _fetch_one(self, where: str, param: Any) -> AgentRecord | None:
        async with self._conn().execute(
            f"SELECT {self._COLUMNS} FROM agents WHERE {where} = ?", (param,)
        ) as cursor:
            row = await cursor.fetchone()
        return AgentRecord.from_row(row) if row else None

    async def find_by_credential(self, credential: str) -> AgentRecord | None:
        return await self._fetch_one("credential", credential)

    async def find_by_id(self, agent_id: str) -> AgentRecord | None:
        return await self._fetch_one("id", agent_id)

    async def list_agents(self) -> list[PublicAgent]:
        """List agents, newest first. The credential column is never selected."""
        async with self._conn().execute(
            "SELECT id, name, color, created_at FROM agents ORDER BY created_at DESC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            {"id": r[0], "name": r[1], "color": r[2], "created_at": int(r[3])}
            for r in rows
        ]

    async def try_admit(self, agent_id: str, now: int, cooldown_ms: int) -> bool:
        """Atomically claim the agent's next write slot.

        Sets ``last_write_at = now`` only if the cooldown has elapsed, in a
        single statement. Returns False if the agent is unknown or still
        cooling down.
        """
        async with self._conn().execute(
            """
            UPDATE agents
            SET last_write_at = ?
            WHERE id = ? AND (last_write_at IS NULL OR ? - last_write_at >= ?)
            """,
            (now, agent_id, now, cooldown_ms),
        ) as cursor:
            changed = cursor.rowcount

        return changed == 1

    async def time_until_eligible(
        self, agent_id: str, now: int, cooldown_ms: int
    ) -> int:
        agent = await self.find_by_id(agent_id)
        if agent is None:
            return 0
        return remaining_cooldown(agent.last_write_at, now, cooldown_ms)

    async def count(self) -> int:
        async with self._conn().execute("SELECT COUNT(*) FROM agents") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def __aenter__(self) -> "SqliteAgentDirectory":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


class InMemoryAgentDirectory:
    """In-memory agent directory for tests and single-process deployments.

    Provides the same interface as SqliteAgentDirectory. The read-compare-write
    in ``try_admit`` runs under a lock keyed by agent id.
    """

    def __init__(self) -> None:
        self._agents: dict[str, AgentRecord] = {}
        self._by_credential: dict[str, str] = {}
        self._admit_locks: dict[str, asyncio.Lock] = {}
        self._logger = get_logger("gridplace.storage.agents.memory")

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def create(
        self, agent_id: str, name: str, credential: str, color: str, now: int
    ) -> None:
        if credential in self._by_credential:
            raise DuplicateCredentialError()
        if agent_id in self._agents:
            raise ValueError(f"Agent {agent_id} already exists")

        self._agents[agent_id] = AgentRecord(
            id=agent_id,
            name=name,
            credential=credential,
            color=color,
            created_at=now,
        )
        self._by_credential[credential] = agent_id
        self._logger.info("Agent created", agent_id=agent_id, name=name)

    async def find_by_credential(self, credential: str) -> AgentRecord | None:
        agent_id = self._by_credential.get(credential)
        if agent_id is None:
            return None
        return self._agents.get(agent_id)

    async def find_by_id(self, agent_id: str) -> AgentRecord | None:
        return self._agents.get(agent_id)

    async def list_agents(self) -> list[PublicAgent]:
        agents = sorted(self._agents.values(), key=lambda a: a.created_at, reverse=True)
        return [agent.public() for agent in agents]

    async def try_admit(self, agent_id: str, now: int, cooldown_ms: int) -> bool:
        lock = self._admit_locks.setdefault(agent_id, asyncio.Lock())
        async with lock:
            agent = self._agents.get(agent_id)
            if agent is None:
                return False
            if remaining_cooldown(agent.last_write_at, now, cooldown_ms) > 0:
                return False
            agent.last_write_at = now
            return True

    async def time_until_eligible(
        self, agent_id: str, now: int, cooldown_ms: int
    ) -> int:
        agent = self._agents.get(agent_id)
        if agent is None:
            return 0
        return remaining_cooldown(agent.last_write_at, now, cooldown_ms)

    async def count(self) -> int:
        return len(self._agents)
