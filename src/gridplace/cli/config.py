"""Configuration management CLI commands."""

import json
import os
from pathlib import Path

import yaml

from gridplace.config import (
    Config,
    ConfigError,
    load_config,
    load_config_from_env,
    validate_config,
)
from gridplace.config.config import ENV_VARS
from gridplace.config.environment import get_config_file_path, get_environment
from gridplace.utils.telemetry import get_logger

logger = get_logger(__name__)


def config_validate_command(args: list[str]) -> int:
    """Validate configuration file or environment variables.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    config_path = None
    if args and not args[0].startswith("-"):
        config_path = Path(args[0])

    try:
        if config_path:
            print(f"Validating configuration file: {config_path}")
            if not config_path.exists():
                print(f"Error: Configuration file not found: {config_path}")
                return 1
            config = load_config(config_path)
        else:
            print("Validating configuration from environment variables")
            config = load_config_from_env()

        validate_config(config)
        print("Configuration is valid")
        return 0

    except ConfigError as e:
        print(f"Configuration validation failed: {e}")
        return 1


def config_show_command(args: list[str]) -> int:
    """Show current configuration.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    format_type = "yaml"
    config_path = None

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ["--format", "-f"]:
            if i + 1 < len(args):
                format_type = args[i + 1]
                i += 2
            else:
                print("Error: --format requires a value")
                return 1
        elif arg.startswith("--format="):
            format_type = arg.split("=", 1)[1]
            i += 1
        elif not arg.startswith("-"):
            config_path = Path(arg)
            i += 1
        else:
            print(f"Unknown argument: {arg}")
            return 1

    if format_type not in ["yaml", "json"]:
        print(f"Error: Invalid format '{format_type}'. Use 'yaml' or 'json'")
        return 1

    try:
        config = load_config(config_path)
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        return 1

    config_dict = config.model_dump()
    if format_type == "json":
        print(json.dumps(config_dict, indent=2))
    else:
        print(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True))
    return 0


def config_init_command(args: list[str]) -> int:
    """Initialize configuration file with defaults.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    output_path = Path("gridplace.yaml")
    force = False

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ["--output", "-o"]:
            if i + 1 < len(args):
                output_path = Path(args[i + 1])
                i += 2
            else:
                print("Error: --output requires a value")
                return 1
        elif arg.startswith("--output="):
            output_path = Path(arg.split("=", 1)[1])
            i += 1
        elif arg in ["--force", "-f"]:
            force = True
            i += 1
        else:
            print(f"Unknown argument: {arg}")
            return 1

    if output_path.exists() and not force:
        print(f"Error: Configuration file already exists: {output_path}")
        print("Use --force to overwrite")
        return 1

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            yaml.safe_dump(
                Config().model_dump(), f, default_flow_style=False, sort_keys=True
            )
    except OSError as e:
        print(f"Error creating configuration file: {e}")
        return 1

    logger.info("Configuration file created", path=str(output_path))
    print(f"Configuration file created: {output_path}")
    return 0


def config_env_command(args: list[str]) -> int:
    """Show environment variable configuration.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    show_all = "--all" in args or "-a" in args

    environment = get_environment()
    config_file = get_config_file_path()

    print(f"Environment: {environment.value}")
    print(f"Config file: {config_file or 'None found'}")
    print()

    print("Environment Variables:")
    for var in ENV_VARS:
        value = os.getenv(var)
        if value or show_all:
            print(f"  {var}={value or '(not set)'}")

    if not show_all:
        print("\nUse --all to show all variables (including unset)")

    return 0


def run_config_command(args: list[str]) -> int:
    """Run configuration management commands.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not args:
        print_config_help()
        return 0

    command = args[0]
    command_args = args[1:]

    if command == "validate":
        return config_validate_command(command_args)
    elif command == "show":
        return config_show_command(command_args)
    elif command == "init":
        return config_init_command(command_args)
    elif command == "env":
        return config_env_command(command_args)
    elif command in ["help", "-h", "--help"]:
        print_config_help()
        return 0
    else:
        print(f"Unknown config command: {command}")
        print_config_help()
        return 1


def print_config_help() -> None:
    """Print configuration command help."""
    print(
        """gridplace config - Configuration management

Usage:
    gridplace config <command> [options]

Commands:
    validate [file]     Validate configuration file or environment
    show [file]         Show current configuration
                        Options: --format=yaml|json
    init [options]      Create default configuration file
                        Options: --output=file, --force
    env                 Show environment variables
                        Options: --all
    help                Show this help message

Examples:
    gridplace config validate
    gridplace config validate config/production.yaml
    gridplace config show --format=json
    gridplace config init --output=config/staging.yaml
"""
    )
