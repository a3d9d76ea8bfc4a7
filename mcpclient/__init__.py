"""Model Context Protocol client with stdio, SSE and streamable HTTP transports."""

__version__ = "0.1.0"

__all__ = ["cli", "client", "events", "jsonrpc", "sse", "stdio", "streamable_http"]