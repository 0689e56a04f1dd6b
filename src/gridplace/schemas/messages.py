"""Pydantic models for the HTTP surface."""

from typing import Any

from pydantic import BaseModel, Field


class PlacementRequest(BaseModel):
    """Body of a placement request.

    Fields are deliberately loose; the admission controller performs the
    range and palette checks so rejections carry structured detail instead of
    a generic schema error.
    """

    x: Any = Field(default=None, description="Column", json_schema_extra={"example": 5})
    y: Any = Field(default=None, description="Row", json_schema_extra={"example": 5})
    color: Any = Field(
        default=None,
        description="Palette color; the agent's default color when omitted",
        json_schema_extra={"example": "#E50000"},
    )


class AgentSummary(BaseModel):
    """Public agent fields."""

    id: str
    name: str
    color: str
    created_at: int | None = None
    cells_placed: int | None = None


class PlacementResponse(BaseModel):
    """Successful placement."""

    success: bool = True
    x: int
    y: int
    color: str
    agent: AgentSummary
    was_override: bool
    previous_writer_id: str | None = None
    placed_at: int
    next_eligible_at: int = Field(..., description="Earliest next placement (ms)")
    cooldown_ms: int
    message: str


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    recovery_action: str | None = Field(default=None, description="Suggested action")
    details: dict[str, Any] = Field(default_factory=dict)


class CellEntry(BaseModel):
    """Sparse canvas entry."""

    color: str
    writer_id: str
    written_at: int


class CellResponse(BaseModel):
    """Single cell with writer information."""

    x: int
    y: int
    color: str
    written_at: int
    agent: AgentSummary | None = None


class BoundsModel(BaseModel):
    min_x: int = 0
    max_x: int = 0
    min_y: int = 0
    max_y: int = 0


class CanvasResponse(BaseModel):
    """Canvas export, optionally restricted to a region."""

    canvas: dict[str, CellEntry]
    cell_count: int
    returned_cells: int
    bounds: BoundsModel
    grid_size: int
    viewers: int
    cooldown_ms: int
    timestamp: int


class ActivityEntry(BaseModel):
    x: int
    y: int
    color: str
    writer_id: str
    writer_name: str
    was_override: bool
    previous_writer_id: str | None = None
    written_at: int


class ActivityResponse(BaseModel):
    activity: list[ActivityEntry]
    count: int


class StatsResponse(BaseModel):
    cell_count: int
    agent_count: int
    viewers: int
    bounds: BoundsModel
    grid_size: int
    cooldown_ms: int
    palette: list[str]
    timestamp: int


class RegistrationRequest(BaseModel):
    name: Any = Field(default=None, json_schema_extra={"example": "pixel-bot"})
    color: Any = Field(default=None, description="Optional default palette color")


class RegistrationResponse(BaseModel):
    """Registration result. The credential is only ever returned here."""

    id: str
    name: str
    credential: str
    color: str
    created_at: int
    cooldown_ms: int
    grid_size: int
    palette: list[str]
    next_eligible_at: int
    name_was_modified: bool = False
    original_name: str | None = None
    message: str


class AgentListResponse(BaseModel):
    agents: list[AgentSummary]
    count: int


class CooldownStatus(BaseModel):
    can_place_now: bool
    wait_ms: int
    next_eligible_at: int
    cooldown_ms: int


class AgentStatusResponse(BaseModel):
    id: str
    name: str
    color: str
    cells_placed: int
    cooldown: CooldownStatus
