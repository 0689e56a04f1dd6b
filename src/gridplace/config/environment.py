"""Environment detection and configuration file discovery."""

import os
from enum import Enum
from pathlib import Path


class Environment(Enum):
    """Supported deployment environments."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


def get_environment() -> Environment:
    """Detect current environment.

    Environment is detected in the following order:
    1. GRIDPLACE_ENVIRONMENT environment variable
    2. Presence of specific files (.env.production, etc.)
    3. Default to development

    Returns:
        Detected environment
    """
    env_str = os.getenv("GRIDPLACE_ENVIRONMENT", "").lower()
    if env_str:
        try:
            return Environment(env_str)
        except ValueError:
            pass

    cwd = Path.cwd()
    if (cwd / ".env.production").exists():
        return Environment.PRODUCTION
    elif (cwd / ".env.staging").exists():
        return Environment.STAGING
    elif (cwd / ".env.testing").exists():
        return Environment.TESTING

    return Environment.DEVELOPMENT


def get_config_file_path(environment: Environment | None = None) -> Path | None:
    """Get the configuration file path for the given environment.

    Args:
        environment: Environment to get config for (defaults to current)

    Returns:
        Path to configuration file, or None if not found
    """
    if environment is None:
        environment = get_environment()

    config_paths = [
        Path(f"config/{environment.value}.yaml"),
        Path(f"config/{environment.value}.yml"),
        Path(f"gridplace.{environment.value}.yaml"),
        Path(f"gridplace.{environment.value}.yml"),
        Path("config/gridplace.yaml"),
        Path("gridplace.yaml"),
    ]

    for path in config_paths:
        if path.exists():
            return path

    return None
