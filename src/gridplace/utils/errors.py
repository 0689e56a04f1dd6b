"""Structured error types for the placement service.

Every error carries a stable ``code`` for clients, a ``details()`` payload
with enough context to self-correct, and a suggested recovery action.
"""

from enum import Enum
from typing import Any


class RecoveryAction(Enum):
    """Recovery actions suggested to callers."""

    RETRY_WITH_DELAY = "retry_with_delay"
    MODIFY_REQUEST = "modify_request"
    REAUTHENTICATE = "reauthenticate"
    ABORT = "abort"


class GridPlaceError(Exception):
    """Base exception for placement service errors."""

    code = "error"

    def __init__(
        self, message: str, recovery_action: RecoveryAction = RecoveryAction.ABORT
    ):
        """Initialize error.

        Args:
            message: Error message
            recovery_action: Suggested recovery action
        """
        super().__init__(message)
        self.message = message
        self.recovery_action = recovery_action

    def details(self) -> dict[str, Any]:
        """Structured context returned to the caller alongside the code."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "recovery_action": self.recovery_action.value,
            "details": self.details(),
        }


class InvalidCredentialError(GridPlaceError):
    """Credential is malformed, missing, or does not resolve to an agent."""

    code = "invalid_credential"

    def __init__(self, reason: str = "Invalid credential"):
        super().__init__(reason, RecoveryAction.REAUTHENTICATE)


class InvalidCoordinatesError(GridPlaceError):
    """Coordinates are not integers inside the grid."""

    code = "invalid_coordinates"

    def __init__(self, min_coordinate: int, max_coordinate: int, reason: str = ""):
        """Initialize invalid coordinates error.

        Args:
            min_coordinate: Smallest valid coordinate
            max_coordinate: Largest valid coordinate
            reason: Why the coordinates were rejected
        """
        self.min_coordinate = min_coordinate
        self.max_coordinate = max_coordinate

        message = reason or (
            f"Coordinates must be integers within {min_coordinate}-{max_coordinate}"
        )
        super().__init__(message, RecoveryAction.MODIFY_REQUEST)

    def details(self) -> dict[str, Any]:
        return {"min": self.min_coordinate, "max": self.max_coordinate}


class InvalidColorError(GridPlaceError):
    """Color is not a member of the palette."""

    code = "invalid_color"

    def __init__(self, color: Any, palette: tuple[str, ...]):
        self.color = color
        self.palette = palette
        super().__init__(
            f"Color {color!r} is not in the {len(palette)}-color palette",
            RecoveryAction.MODIFY_REQUEST,
        )

    def details(self) -> dict[str, Any]:
        return {"palette": list(self.palette)}


class RateLimitedError(GridPlaceError):
    """Agent is still inside its cooldown window.

    This is the normal steady-state outcome for a client that polls faster
    than the cooldown allows.
    """

    code = "rate_limited"

    def __init__(
        self, agent_id: str, wait_ms: int, next_eligible_at: int, cooldown_ms: int
    ):
        """Initialize rate limited error.

        Args:
            agent_id: Agent identifier
            wait_ms: Remaining wait in milliseconds
            next_eligible_at: Timestamp (ms) when the agent may place again
            cooldown_ms: Configured cooldown duration
        """
        self.agent_id = agent_id
        self.wait_ms = wait_ms
        self.next_eligible_at = next_eligible_at
        self.cooldown_ms = cooldown_ms

        seconds = -(-wait_ms // 1000)
        super().__init__(
            f"You must wait {seconds} seconds before placing another pixel",
            RecoveryAction.RETRY_WITH_DELAY,
        )

    def details(self) -> dict[str, Any]:
        return {
            "wait_ms": self.wait_ms,
            "next_eligible_at": self.next_eligible_at,
            "cooldown_ms": self.cooldown_ms,
        }


class InternalError(GridPlaceError):
    """Unexpected failure below the controller boundary.

    The message is intentionally generic; the cause is only logged.
    """

    code = "internal_error"

    def __init__(self, message: str = "Failed to place pixel"):
        super().__init__(message, RecoveryAction.RETRY_WITH_DELAY)


class CapacityExceededError(GridPlaceError):
    """Global observer connection cap reached."""

    code = "capacity_exceeded"

    def __init__(self, limit: int, retry_after_seconds: int = 30):
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "Server at capacity. Please try again later.",
            RecoveryAction.RETRY_WITH_DELAY,
        )

    def details(self) -> dict[str, Any]:
        return {"limit": self.limit, "retry_after_seconds": self.retry_after_seconds}


class PerOriginLimitExceededError(GridPlaceError):
    """Per-origin observer connection cap reached."""

    code = "per_origin_limit_exceeded"

    def __init__(self, origin: str, limit: int, retry_after_seconds: int = 30):
        self.origin = origin
        self.limit = limit
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "Too many connections from this origin.",
            RecoveryAction.RETRY_WITH_DELAY,
        )

    def details(self) -> dict[str, Any]:
        return {"limit": self.limit, "retry_after_seconds": self.retry_after_seconds}


class RegionTooLargeError(GridPlaceError):
    """Requested region exceeds the maximum span."""

    code = "region_too_large"

    def __init__(self, width: int, height: int, max_span: int):
        self.width = width
        self.height = height
        self.max_span = max_span
        super().__init__(
            f"Region cannot exceed {max_span}x{max_span} cells "
            f"(requested {width}x{height})",
            RecoveryAction.MODIFY_REQUEST,
        )

    def details(self) -> dict[str, Any]:
        return {"max_width": self.max_span, "max_height": self.max_span}


class DuplicateCredentialError(GridPlaceError):
    """A credential collided with an existing agent."""

    code = "duplicate_credential"

    def __init__(self) -> None:
        super().__init__("Credential already exists", RecoveryAction.RETRY_WITH_DELAY)


class InvalidNameError(GridPlaceError):
    """Display name has no usable characters after sanitizing."""

    code = "invalid_name"

    def __init__(self, max_length: int):
        self.max_length = max_length
        super().__init__(
            "Name must contain at least one alphanumeric character (A-Z, 0-9)",
            RecoveryAction.MODIFY_REQUEST,
        )

    def details(self) -> dict[str, Any]:
        return {
            "allowed_characters": "A-Z a-z 0-9 - _ . and space",
            "max_length": self.max_length,
        }
