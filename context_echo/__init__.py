"""context-echo: per-user memory for MCP agents."""

from .version import __version__

__all__ = ["__version__"]
