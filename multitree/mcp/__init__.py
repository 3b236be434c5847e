"""MCP server for multitree — exposes taxonomy queries as tools for AI agents."""

from multitree.mcp.server import mcp, run_server

__all__ = ["mcp", "run_server"]
