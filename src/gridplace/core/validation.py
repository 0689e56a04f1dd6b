"""Input checks and credential helpers used before anything touches a store."""

import hmac
import re
import secrets
from typing import Any

from gridplace.utils.errors import (
    InvalidColorError,
    InvalidCoordinatesError,
    InvalidCredentialError,
    InvalidNameError,
)

# Original r/place (2017) 16-color palette
DEFAULT_PALETTE: tuple[str, ...] = (
    "#FFFFFF",  # White
    "#E4E4E4",  # Light Gray
    "#888888",  # Gray
    "#222222",  # Black
    "#FFA7D1",  # Pink
    "#E50000",  # Red
    "#E59500",  # Orange
    "#A06A42",  # Brown
    "#E5D900",  # Yellow
    "#94E044",  # Lime
    "#02BE01",  # Green
    "#00D3DD",  # Cyan
    "#0083C7",  # Blue
    "#0000EA",  # Dark Blue
    "#CF6EE4",  # Magenta
    "#820080",  # Purple
)

CREDENTIAL_BYTES = 32
AGENT_ID_BYTES = 16
MAX_NAME_LENGTH = 50

_CREDENTIAL_RE = re.compile(r"^[a-fA-F0-9]{64}$")
_NAME_DISALLOWED_RE = re.compile(r"[^a-zA-Z0-9\-_. ]")
_ALNUM_RE = re.compile(r"[a-zA-Z0-9]")


def generate_credential() -> str:
    """Return a new 256-bit hex credential."""
    return secrets.token_hex(CREDENTIAL_BYTES)


def generate_agent_id() -> str:
    """Return a new 128-bit hex agent id."""
    return secrets.token_hex(AGENT_ID_BYTES)


def check_credential_format(credential: Any) -> str:
    """Reject anything that cannot possibly be a credential.

    Runs before any store lookup so malformed input costs nothing.

    Raises:
        InvalidCredentialError: If the credential is missing or malformed
    """
    if not isinstance(credential, str) or not credential:
        raise InvalidCredentialError("Missing credential")
    if not _CREDENTIAL_RE.match(credential):
        raise InvalidCredentialError("Invalid credential format")
    return credential


def credentials_match(presented: str, stored: str) -> bool:
    """Constant-time comparison of a presented credential with a stored one."""
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def validate_coordinates(x: Any, y: Any, grid_size: int) -> tuple[int, int]:
    """Check that ``x`` and ``y`` are integers inside ``[0, grid_size - 1]``.

    Integral floats (``5.0``) are accepted since JSON clients cannot always
    tell the two apart.

    Returns:
        The coordinates as ints

    Raises:
        InvalidCoordinatesError: With the valid range attached
    """
    max_coordinate = grid_size - 1
    ix, iy = _as_int(x), _as_int(y)
    if ix is None or iy is None:
        raise InvalidCoordinatesError(
            0, max_coordinate, reason="x and y must be integers"
        )
    if not (0 <= ix <= max_coordinate and 0 <= iy <= max_coordinate):
        raise InvalidCoordinatesError(0, max_coordinate)
    return ix, iy


def validate_color(color: Any, palette: tuple[str, ...]) -> str:
    """Match ``color`` case-insensitively against the palette.

    Returns:
        The palette entry (upper-case)

    Raises:
        InvalidColorError: With the palette attached
    """
    if not isinstance(color, str):
        raise InvalidColorError(color, palette)
    normalized = color.strip().upper()
    if normalized not in palette:
        raise InvalidColorError(color, palette)
    return normalized


def sanitize_name(name: Any) -> tuple[str, bool]:
    """Strip a display name down to the allowed character set.

    Keeps letters, digits, hyphens, underscores, dots and spaces, trims, and
    truncates to 50 characters. At least one alphanumeric must remain.

    Returns:
        (sanitized name, whether it differs from the input)

    Raises:
        InvalidNameError: If nothing usable remains
    """
    if not isinstance(name, str):
        raise InvalidNameError(MAX_NAME_LENGTH)

    sanitized = _NAME_DISALLOWED_RE.sub("", name).strip()[:MAX_NAME_LENGTH]
    if not _ALNUM_RE.search(sanitized):
        raise InvalidNameError(MAX_NAME_LENGTH)

    return sanitized, sanitized != name
