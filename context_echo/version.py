"""Version information for the context-echo MCP server."""

__version__ = "1.0.0"
