"""Core placement logic: validation, admission, fan-out and registration."""

from .activity import ActivityLog
from .admission import (
    AdmissionController,
    AgentStatus,
    PlacementAccepted,
    PlacementRejected,
    PlacementResult,
)
from .broadcaster import Broadcaster, Subscription
from .registry import AgentRegistry, Registration
from .validation import DEFAULT_PALETTE

__all__ = [
    "DEFAULT_PALETTE",
    "ActivityLog",
    "AdmissionController",
    "AgentRegistry",
    "AgentStatus",
    "Broadcaster",
    "PlacementAccepted",
    "PlacementRejected",
    "PlacementResult",
    "Registration",
    "Subscription",
]
