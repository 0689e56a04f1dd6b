"""Core record types shared by the stores, the controller and the broadcaster."""

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, TypedDict


class Cell(TypedDict):
    """Current occupant of one grid coordinate (last write wins)."""

    x: Annotated[int, "Column, 0 <= x < grid_size"]
    y: Annotated[int, "Row, 0 <= y < grid_size"]
    color: Annotated[str, "Palette color, upper-case #RRGGBB"]
    writer_id: Annotated[str, "Agent.id of the most recent committed writer"]
    written_at: Annotated[int, "Commit timestamp in milliseconds"]


class Bounds(TypedDict):
    """Inclusive rectangle over grid coordinates."""

    min_x: int
    max_x: int
    min_y: int
    max_y: int


class PublicAgent(TypedDict):
    """Agent as exposed in bulk exports. Never carries the credential."""

    id: str
    name: str
    color: str
    created_at: int


class ChangeEvent(TypedDict, total=False):
    """Frame pushed to observers.

    ``type`` is one of ``pixel``, ``viewers``, ``ping`` or ``connected``; the
    remaining keys depend on the frame type.
    """

    type: Literal["pixel", "viewers", "ping", "connected"]
    x: int
    y: int
    color: str
    writerId: str
    writerName: str
    wasOverride: bool
    previousWriterId: str | None
    timestamp: int
    liveViewerCount: int
    message: str


@dataclass
class AgentRecord:
    """Registered agent as held by the directory.

    ``last_write_at`` is ``None`` until the first admitted placement. The
    credential is excluded from ``repr`` so records never leak it into logs.
    """

    id: str
    name: str
    credential: str = field(repr=False)
    color: str
    created_at: int
    last_write_at: int | None = None

    def public(self) -> PublicAgent:
        """Return the credential-free view used by every export path."""
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: Any) -> "AgentRecord":
        """Build a record from an ``agents`` table row."""
        return cls(
            id=row[0],
            name=row[1],
            credential=row[2],
            color=row[3],
            created_at=int(row[4]),
            last_write_at=int(row[5]) if row[5] is not None else None,
        )
