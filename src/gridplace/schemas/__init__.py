"""Data models and type definitions for the placement service."""

from .messages import (
    CanvasResponse,
    CellResponse,
    ErrorResponse,
    PlacementRequest,
    PlacementResponse,
    RegistrationRequest,
    RegistrationResponse,
)
from .types import AgentRecord, Bounds, Cell, ChangeEvent, PublicAgent

__all__ = [
    "AgentRecord",
    "Bounds",
    "CanvasResponse",
    "Cell",
    "CellResponse",
    "ChangeEvent",
    "ErrorResponse",
    "PlacementRequest",
    "PlacementResponse",
    "PublicAgent",
    "RegistrationRequest",
    "RegistrationResponse",
]
