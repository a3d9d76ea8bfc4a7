# mcpclient

A client for the Model Context Protocol (MCP). It exchanges JSON-RPC 2.0 messages
with an MCP server over one of three transports:

- **stdio** (`mcpclient.stdio.StdioTransport`): starts the server as a subprocess and
  sends newline-delimited JSON over its standard input and output
- **SSE** (`mcpclient.sse.SSETransport`): keeps a Server-Sent Events stream open for
  responses and notifications, and posts requests to the endpoint the server announces
- **streamable HTTP** (`mcpclient.streamable_http.StreamableHTTPTransport`): one HTTP
  POST per message; the reply is a single JSON response or an event stream that ends
  with the response

## Installation

```
pip install mcpclient
```

## Library use

```python
from mcpclient.client import new_stdio_client

client = new_stdio_client("python", [], "server.py")
try:
    result = client.initialize(
        "2025-03-26",
        {"name": "example-client", "version": "1.0.0"},
        {},
    )
    print(result["serverInfo"]["name"])

    for tool in client.list_tools()["tools"]:
        print(tool["name"], "-", tool.get("description", ""))

    reply = client.call_tool("echo", {"message": "hello"})
    print(reply["content"])
finally:
    client.close()
```

Results are returned as the JSON objects (dicts) the server sent.

Other ways to connect:

```python
from mcpclient.client import Client, new_sse_client, new_streamable_http_client
from mcpclient.streamable_http import StreamableHTTPTransport

client = new_sse_client("http://localhost:8080/sse", {"Authorization": "Bearer token"}, None, None)
client.start()

client = new_streamable_http_client("http://localhost:8080/mcp", None, None, 30.0)
client.start()

client = Client(StreamableHTTPTransport("http://localhost:8080/mcp", None, None, 30.0), None, 30.0)
client.start()
```

`header_func`, where given, is called with no arguments before each HTTP request and
returns extra headers to send. `Client` can also be used as a context manager; it
closes its transport on exit.

`start()` must be called before `initialize()`, except for `new_stdio_client`, which
starts the subprocess on its own. Until `initialize()` has succeeded, any other request
raises `RuntimeError("client not initialized")`. Register notification handlers with
`Client.on_notification`; they run in the order they were added.

The list methods (`list_tools`, `list_resources`, `list_resource_templates`,
`list_prompts`) follow `nextCursor` and collect every page. The `*_by_page`
variants fetch a single page for a given cursor.

Errors:

- `mcpclient.client.MCPError` when the server answers with a JSON-RPC error (its
  `code` and `data` are kept on the exception) or with a result that is not an object
- `mcpclient.jsonrpc.TransportError` when the transport cannot deliver a message or
  the connection closes
- `TimeoutError` when a timeout given to the client or transport runs out

Helpers: `get_endpoint(client)` returns the message endpoint of an SSE client (and
raises `TypeError` for other transports); `get_stderr(client)` returns the server's
error stream for a stdio client, or `None` otherwise.

Lower-level pieces: `mcpclient.jsonrpc` holds the message dataclasses
(`JSONRPCRequest`, `JSONRPCResponse`, `JSONRPCNotification`) and the abstract
`Transport`; `StdioTransport.from_streams` runs the stdio transport over existing
streams instead of a subprocess; `mcpclient.events.iter_sse_events` turns lines of an
event stream into `(event, data)` pairs.

## Command line

```
mcpclient --stdio "python server.py"
mcpclient --http http://localhost:8080/mcp
```

Give exactly one of `--stdio` or `--http`. The command connects, initializes, lists
the server's tools and resources if it has those capabilities, and then shuts down.
The `--stdio` value is split on spaces, with single and double quotes grouping words.
With `--stdio`, the server's stderr is copied through with a `[Server]` prefix.
Requests time out after 30 seconds.

## What it does not do

This package is a client only: it contains no MCP server and no in-process transport.
The streamable HTTP transport does not batch messages, does not listen for server
messages between requests, does not resume streams, and does not answer requests
sent from the server.

## Development

```
pip install -e ".[test]"
pytest
```