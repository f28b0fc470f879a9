"""OAuth-proxying MCP gateway for the Quire API."""

__version__ = "0.1.0"
