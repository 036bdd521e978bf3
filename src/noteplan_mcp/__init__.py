"""
NotePlan MCP - data-access core for an automated NotePlan assistant, served over MCP.
This package resolves loose note and folder references, aggregates search across
the local markdown tree and synced spaces, and performs line-level edits that are
gated behind dry-run confirmation tokens.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("noteplan-mcp")
except PackageNotFoundError:
    __version__ = "0.9.0"
