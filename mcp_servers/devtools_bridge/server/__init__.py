"""MCP boundary: tool contract, registry dispatch and structured results."""
