"""Storage layer for the NotePlan MCP server."""
from noteplan_mcp.storage.local_store import LocalNoteStore
from noteplan_mcp.storage.space_store import SpaceStore

__all__ = ["LocalNoteStore", "SpaceStore"]
