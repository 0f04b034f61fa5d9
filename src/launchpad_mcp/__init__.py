"""Launchpad MCP: supervise external CLI runs through scope and progress files."""

__version__ = "0.1.0"

__all__ = ["__version__"]
