"""Pixel placement admission controller.

Each placement runs through a fixed sequence of checks, any of which can
reject the request with a distinct error:

    received -> credential checked -> coordinates checked -> color checked
             -> cooldown admitted -> committed -> notified -> responded

The cooldown check is delegated to ``AgentDirectory.try_admit``, a single
atomic conditional update, so two concurrent requests from one agent can
never both be admitted. Nothing here retries; callers get the wait time and
decide for themselves.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from gridplace.core.activity import ActivityLog
from gridplace.core.broadcaster import Broadcaster
from gridplace.core.validation import (
    DEFAULT_PALETTE,
    check_credential_format,
    credentials_match,
    validate_color,
    validate_coordinates,
)
from gridplace.schemas.types import AgentRecord, Cell, PublicAgent
from gridplace.storage.agents import AgentDirectory, remaining_cooldown
from gridplace.storage.grid import GridStore
from gridplace.utils.errors import (
    GridPlaceError,
    InternalError,
    InvalidCredentialError,
    RateLimitedError,
)
from gridplace.utils.telemetry import (
    async_performance_timer,
    get_logger,
    now_ms,
    record_placement,
)


@dataclass
class PlacementAccepted:
    """A committed placement."""

    x: int
    y: int
    color: str
    agent: PublicAgent
    was_override: bool
    previous_writer_id: str | None
    placed_at: int
    next_eligible_at: int
    cooldown_ms: int

    success = True


@dataclass
class PlacementRejected:
    """A rejected placement; ``error`` carries code and structured details."""

    error: GridPlaceError

    success = False


PlacementResult = PlacementAccepted | PlacementRejected


@dataclass
class AgentStatus:
    """Cooldown and contribution summary for one agent."""

    agent: PublicAgent
    cells_placed: int
    can_place_now: bool
    wait_ms: int
    next_eligible_at: int
    cooldown_ms: int


class AdmissionController:
    """Authenticates, validates, admits and commits placements.

    Depends only on the directory and grid store interfaces, so any backend
    (or the in-memory doubles) can sit underneath it.
    """

    def __init__(
        self,
        directory: AgentDirectory,
        grid: GridStore,
        broadcaster: Broadcaster,
        grid_size: int = 1000,
        cooldown_ms: int = 300_000,
        palette: tuple[str, ...] = DEFAULT_PALETTE,
        activity: ActivityLog | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the controller.

        Args:
            directory: Agent directory providing lookups and ``try_admit``
            grid: Grid store (normally the GridCache)
            broadcaster: Fan-out target for committed changes
            grid_size: Grid dimension N; valid coordinates are 0..N-1
            cooldown_ms: Minimum time between an agent's placements
            palette: Allowed colors
            activity: Optional recent-activity log
            clock: Millisecond clock
        """
        self.directory = directory
        self.grid = grid
        self.broadcaster = broadcaster
        self.grid_size = grid_size
        self.cooldown_ms = cooldown_ms
        self.palette = palette
        self.activity = activity
        self._clock = clock
        self._logger = get_logger("gridplace.admission")

    async def authenticate(self, credential: Any) -> AgentRecord:
        """Resolve a credential to its agent.

        The shape check runs before any lookup, and the resolved credential
        is compared with the presented one in constant time.

        Raises:
            InvalidCredentialError: If malformed or unknown
        """
        presented = check_credential_format(credential)
        agent = await self.directory.find_by_credential(presented)
        if agent is None or not credentials_match(presented, agent.credential):
            raise InvalidCredentialError()
        return agent

    async def place(
        self, credential: Any, x: Any, y: Any, color: Any = None
    ) -> PlacementResult:
        """Attempt a placement.

        Never raises. Classified failures come back as PlacementRejected with
        their own error; anything else is logged and reported as
        InternalError without detail.

        Args:
            credential: Presented agent credential
            x: Column
            y: Row
            color: Palette color, or None for the agent's default

        Returns:
            PlacementAccepted or PlacementRejected
        """
        try:
            result = await self._place(credential, x, y, color)
        except GridPlaceError as e:
            record_placement(e.code)
            self._logger.info(
                "Placement rejected", error=e.code, reason=e.message, **e.details()
            )
            return PlacementRejected(e)
        except Exception as e:
            record_placement(InternalError.code)
            self._logger.error(
                "Placement failed", error=str(e), error_type=type(e).__name__
            )
            return PlacementRejected(InternalError())

        record_placement("accepted")
        return result

    async def _place(
        self, credential: Any, x: Any, y: Any, color: Any
    ) -> PlacementAccepted:
        agent = await self.authenticate(credential)

        ix, iy = validate_coordinates(x, y, self.grid_size)

        if color is None or color == "":
            final_color = agent.color
        else:
            final_color = validate_color(color, self.palette)

        now = self._clock()
        if not await self.directory.try_admit(agent.id, now, self.cooldown_ms):
            wait_ms = await self.directory.time_until_eligible(
                agent.id, now, self.cooldown_ms
            )
            raise RateLimitedError(agent.id, wait_ms, now + wait_ms, self.cooldown_ms)

        async with async_performance_timer(
            "commit_placement",
            agent_id=agent.id,
            logger=self._logger,
            tracer_name="gridplace.admission",
        ):
            # Read only to report the override; correctness does not depend on it
            existing = await self.grid.get(ix, iy)
            await self.grid.put(ix, iy, final_color, agent.id, now)

        was_override = existing is not None
        previous_writer_id = existing["writer_id"] if existing else None

        self.broadcaster.publish(
            {
                "type": "pixel",
                "x": ix,
                "y": iy,
                "color": final_color,
                "writerId": agent.id,
                "writerName": agent.name,
                "wasOverride": was_override,
                "previousWriterId": previous_writer_id,
                "timestamp": now,
                "liveViewerCount": self.broadcaster.count(),
            }
        )

        if self.activity is not None:
            self.activity.record(
                {
                    "x": ix,
                    "y": iy,
                    "color": final_color,
                    "writer_id": agent.id,
                    "writer_name": agent.name,
                    "was_override": was_override,
                    "previous_writer_id": previous_writer_id,
                    "written_at": now,
                }
            )

        self._logger.info(
            "Pixel placed",
            agent_id=agent.id,
            x=ix,
            y=iy,
            color=final_color,
            was_override=was_override,
        )

        return PlacementAccepted(
            x=ix,
            y=iy,
            color=final_color,
            agent=agent.public(),
            was_override=was_override,
            previous_writer_id=previous_writer_id,
            placed_at=now,
            next_eligible_at=now + self.cooldown_ms,
            cooldown_ms=self.cooldown_ms,
        )

    async def status(self, credential: Any) -> AgentStatus:
        """Report an agent's cooldown state and placed-cell count.

        Raises:
            InvalidCredentialError: If the credential does not resolve
        """
        agent = await self.authenticate(credential)
        now = self._clock()
        wait_ms = remaining_cooldown(agent.last_write_at, now, self.cooldown_ms)
        counts = await self.grid.counts_by_writer()

        return AgentStatus(
            agent=agent.public(),
            cells_placed=counts.get(agent.id, 0),
            can_place_now=wait_ms == 0,
            wait_ms=wait_ms,
            next_eligible_at=now + wait_ms,
            cooldown_ms=self.cooldown_ms,
        )

    async def get_cell(
        self, x: Any, y: Any
    ) -> tuple[Cell, PublicAgent | None] | None:
        """Read one cell and its writer's public record.

        Returns:
            (cell, writer) or None if the cell is unclaimed; writer is None
            if the agent no longer exists

        Raises:
            InvalidCoordinatesError: If the coordinates are out of range
        """
        ix, iy = validate_coordinates(x, y, self.grid_size)
        cell = await self.grid.get(ix, iy)
        if cell is None:
            return None
        writer = await self.directory.find_by_id(cell["writer_id"])
        return cell, writer.public() if writer else None
