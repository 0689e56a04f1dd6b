"""Entry point for the `gridplace` command."""

import sys


def main(args: list[str] | None = None) -> int:
    """Main entry point for the gridplace CLI."""
    if args is None:
        args = sys.argv[1:]

    if not args or args[0] in ["-h", "--help", "help"]:
        print_help()
        return 0

    command = args[0]

    if command == "version":
        print_version()
        return 0
    elif command == "serve":
        return run_serve(args[1:])
    elif command == "config":
        return run_config(args[1:])
    else:
        print(f"Unknown command: {command}")
        print_help()
        return 1


def print_help() -> None:
    """Print CLI help message."""
    print(
        """gridplace - Shared canvas pixel placement service

Usage:
    gridplace <command> [options]

Commands:
    version     Show version information
    serve       Run the canvas web server
    config      Configuration management
    help        Show this help message

Options:
    -h, --help  Show help message
"""
    )


def print_version() -> None:
    """Print version information."""
    from gridplace import __version__

    print(f"gridplace {__version__}")


def run_serve(args: list[str]) -> int:
    """Run the web server command."""
    import click

    from gridplace.adapters.web.cli import run_server

    try:
        run_server.main(args=args, prog_name="gridplace serve", standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
    except Exception as e:
        print(f"Server error: {e}")
        return 1


def run_config(args: list[str]) -> int:
    """Run the config command."""
    from gridplace.cli.config import run_config_command

    return run_config_command(args)


if __name__ == "__main__":
    sys.exit(main())
