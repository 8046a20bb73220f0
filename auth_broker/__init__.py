"""OAuth 2.0 authorization broker for remote MCP servers."""

__version__ = "1.2.0"
