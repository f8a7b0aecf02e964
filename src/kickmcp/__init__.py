"""Kick MCP gateway: JSON-RPC / MCP and HTTP front end for the Kick API."""

__version__ = "0.3.0"
