"""A small command-line client that connects to an MCP server and lists what it offers."""

from __future__ import annotations

import argparse
import sys
import threading
from typing import IO, Any, Optional, Sequence

from .client import LATEST_PROTOCOL_VERSION, Client, MCPError, get_stderr
from .jsonrpc import JSONRPCNotification, Transport, TransportError
from .stdio import StdioTransport
from .streamable_http import StreamableHTTPTransport

_REQUEST_TIMEOUT = 30.0
_CLIENT_NAME = "MCP-Go Simple Client Example"
_CLIENT_VERSION = "1.0.0"


def parse_command(cmd: str) -> list[str]:
    """Split a command line into words on spaces, honouring single and double quotes.

    A quote character inside quotes of the other kind is kept literally.
    No escapes are recognised.
    """
    words: list[str] = []
    current: list[str] = []
    quote: Optional[str] = None
    for char in cmd:
        if char == " " and quote is None:
            if current:
                words.append("".join(current))
                current = []
        elif char in ("'", '"'):
            if quote is None:
                quote = char
            elif char == quote:
                quote = None
            else:
                current.append(char)
        else:
            current.append(char)
    if current:
        words.append("".join(current))
    return words


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpclient",
        description="Connect to an MCP server and list its tools and resources.",
    )
    parser.add_argument(
        "--stdio",
        default="",
        help="Command to execute for stdio transport (e.g. 'python server.py')",
    )
    parser.add_argument(
        "--http",
        default="",
        help="URL for HTTP transport (e.g. 'http://localhost:8080/mcp')",
    )
    return parser


def _forward_stderr(stream: IO[Any]) -> None:
    read = getattr(stream, "read1", None) or stream.read
    while True:
        try:
            chunk = read(4096)
        except (OSError, ValueError):
            return
        if not chunk:
            return
        text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else chunk
        sys.stderr.write(f"[Server] {text}")
        sys.stderr.flush()


def _print_notification(notification: JSONRPCNotification) -> None:
    print(f"Received notification: {notification.method}")


def _run(client: Client) -> int:
    try:
        client.start()
    except (TransportError, OSError, RuntimeError) as exc:
        print(f"Failed to start client: {exc}", file=sys.stderr)
        return 1

    stderr = get_stderr(client)
    if stderr is not None:
        threading.Thread(
            target=_forward_stderr, args=(stderr,), name="server-stderr", daemon=True
        ).start()

    client.on_notification(_print_notification)

    print("Initializing client...")
    try:
        server_info = client.initialize(
            LATEST_PROTOCOL_VERSION,
            {"name": _CLIENT_NAME, "version": _CLIENT_VERSION},
            {},
        )
    except (TransportError, MCPError, TimeoutError, RuntimeError) as exc:
        print(f"Failed to initialize: {exc}", file=sys.stderr)
        return 1

    info = server_info.get("serverInfo") or {}
    print(f"Connected to server: {info.get('name', '')} (version {info.get('version', '')})")
    capabilities = server_info.get("capabilities") or {}
    print(f"Server capabilities: {capabilities}")

    if capabilities.get("tools") is not None:
        print("Fetching available tools...")
        try:
            tools = client.list_tools().get("tools") or []
        except (TransportError, MCPError, TimeoutError) as exc:
            print(f"Failed to list tools: {exc}", file=sys.stderr)
        else:
            print(f"Server has {len(tools)} tools available")
            for number, tool in enumerate(tools, start=1):
                print(f"  {number}. {tool.get('name', '')} - {tool.get('description', '')}")

    if capabilities.get("resources") is not None:
        print("Fetching available resources...")
        try:
            resources = client.list_resources().get("resources") or []
        except (TransportError, MCPError, TimeoutError) as exc:
            print(f"Failed to list resources: {exc}", file=sys.stderr)
        else:
            print(f"Server has {len(resources)} resources available")
            for number, resource in enumerate(resources, start=1):
                print(f"  {number}. {resource.get('uri', '')} - {resource.get('name', '')}")

    print("Client initialized successfully. Shutting down...")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the client; returns the process exit status."""
    parser = _build_parser()
    options = parser.parse_args(argv)

    if bool(options.stdio) == bool(options.http):
        print("Error: You must specify exactly one of --stdio or --http")
        parser.print_usage()
        return 1

    transport: Transport
    if options.stdio:
        print("Initializing stdio client...")
        words = parse_command(options.stdio)
        if not words:
            print("Error: Invalid stdio command")
            return 1
        transport = StdioTransport(words[0], None, *words[1:])
    else:
        print("Initializing HTTP client...")
        try:
            transport = StreamableHTTPTransport(options.http)
        except ValueError as exc:
            print(f"Failed to create HTTP transport: {exc}", file=sys.stderr)
            return 1

    client = Client(transport, timeout=_REQUEST_TIMEOUT)
    try:
        return _run(client)
    finally:
        try:
            client.close()
        except (TransportError, OSError):
            pass


if __name__ == "__main__":
    sys.exit(main())