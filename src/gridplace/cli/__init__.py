"""Command-line interface for gridplace."""
