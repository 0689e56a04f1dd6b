# Shared utilities and helpers

from .errors import (
    CapacityExceededError,
    DuplicateCredentialError,
    GridPlaceError,
    InternalError,
    InvalidColorError,
    InvalidCoordinatesError,
    InvalidCredentialError,
    InvalidNameError,
    PerOriginLimitExceededError,
    RateLimitedError,
    RecoveryAction,
    RegionTooLargeError,
)
from .telemetry import get_logger, now_ms, setup_logging

__all__ = [
    "CapacityExceededError",
    "DuplicateCredentialError",
    "GridPlaceError",
    "InternalError",
    "InvalidColorError",
    "InvalidCoordinatesError",
    "InvalidCredentialError",
    "InvalidNameError",
    "PerOriginLimitExceededError",
    "RateLimitedError",
    "RecoveryAction",
    "RegionTooLargeError",
    "get_logger",
    "now_ms",
    "setup_logging",
]
