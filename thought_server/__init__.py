"""MCP server tracking sequential thought chains and chain-of-draft cycles."""

__version__ = "0.3.0"
