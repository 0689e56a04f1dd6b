"""Transport adapters for the canvas service."""
