"""The MCP client: protocol requests on top of any JSON-RPC transport."""

from __future__ import annotations

import itertools
import threading
from typing import IO, Any, Callable, Optional

import httpx

from .jsonrpc import (
    JSONRPCNotification,
    JSONRPCRequest,
    NotificationHandler,
    Transport,
    TransportError,
)
from .sse import HeaderFunc, SSETransport
from .stdio import StdioTransport
from .streamable_http import StreamableHTTPTransport

LATEST_PROTOCOL_VERSION = "2025-03-26"


class MCPError(Exception):
    """Raised when the server answers a request with an error, or with a malformed result."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


def _as_object(result: Any) -> dict[str, Any]:
    if not isinstance(result, dict):
        raise MCPError(f"failed to unmarshal response: expected an object, got {result!r}")
    return result


def _paginated_params(cursor: Optional[str]) -> dict[str, Any]:
    return {"cursor": cursor} if cursor else {}


class Client:
    """Speaks the Model Context Protocol to a server over a transport.

    Call :meth:`start`, then :meth:`initialize`, before any other request.
    Results are returned as the JSON objects the server sent.
    """

    def __init__(
        self,
        transport: Optional[Transport],
        client_capabilities: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._transport = transport
        self._client_capabilities: dict[str, Any] = dict(client_capabilities or {})
        self._server_capabilities: dict[str, Any] = {}
        self._timeout = timeout
        self._initialized = False
        self._handlers: list[NotificationHandler] = []
        self._handlers_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def start(self) -> None:
        """Open the transport and route its notifications to the registered handlers."""
        if self._transport is None:
            raise RuntimeError("transport is nil")
        self._transport.start()
        self._install_notification_handler()

    def _install_notification_handler(self) -> None:
        assert self._transport is not None
        self._transport.set_notification_handler(self._dispatch_notification)

    def _dispatch_notification(self, notification: JSONRPCNotification) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers)
        for handler in handlers:
            handler(notification)

    def close(self) -> None:
        """Close the transport."""
        if self._transport is not None:
            self._transport.close()

    def on_notification(self, handler: NotificationHandler) -> None:
        """Register a notification handler; handlers run in the order they were added."""
        with self._handlers_lock:
            self._handlers.append(handler)

    def _send_request(self, method: str, params: Any = None) -> Any:
        if not self._initialized and method != "initialize":
            raise RuntimeError("client not initialized")
        if self._transport is None:
            raise RuntimeError("transport is nil")
        with self._ids_lock:
            request_id = next(self._ids)
        request = JSONRPCRequest(id=request_id, method=method, params=params)
        try:
            response = self._transport.send_request(request, self._timeout)
        except TransportError as exc:
            raise TransportError(f"transport error: {exc}") from exc
        if response.error is not None:
            raise MCPError(response.error.message, response.error.code, response.error.data)
        return response.result

    def initialize(
        self,
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        client_info: Optional[dict[str, Any]] = None,
        capabilities: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Negotiate with the server and announce that the client is ready."""
        params = {
            "protocolVersion": protocol_version,
            "clientInfo": dict(client_info or {"name": "", "version": ""}),
            "capabilities": dict(capabilities or {}),
        }
        result = _as_object(self._send_request("initialize", params))
        self._server_capabilities = dict(result.get("capabilities") or {})

        assert self._transport is not None
        try:
            self._transport.send_notification(
                JSONRPCNotification(method="notifications/initialized")
            )
        except TransportError as exc:
            raise TransportError(f"failed to send initialized notification: {exc}") from exc

        self._initialized = True
        return result

    def ping(self) -> None:
        self._send_request("ping")

    def _list_page(self, method: str, cursor: Optional[str]) -> dict[str, Any]:
        return _as_object(self._send_request(method, _paginated_params(cursor)))

    def _list_all(self, method: str, key: str) -> dict[str, Any]:
        result = self._list_page(method, None)
        items = list(result.get(key) or [])
        cursor = result.get("nextCursor")
        while cursor:
            page = self._list_page(method, cursor)
            items.extend(page.get(key) or [])
            cursor = page.get("nextCursor")
        result[key] = items
        result.pop("nextCursor", None)
        return result

    def list_resources_by_page(self, cursor: Optional[str] = None) -> dict[str, Any]:
        return self._list_page("resources/list", cursor)

    def list_resources(self) -> dict[str, Any]:
        """List every resource, following cursors until the last page."""
        return self._list_all("resources/list", "resources")

    def list_resource_templates_by_page(self, cursor: Optional[str] = None) -> dict[str, Any]:
        return self._list_page("resources/templates/list", cursor)

    def list_resource_templates(self) -> dict[str, Any]:
        """List every resource template, following cursors until the last page."""
        return self._list_all("resources/templates/list", "resourceTemplates")

    def read_resource(self, uri: str) -> dict[str, Any]:
        return _as_object(self._send_request("resources/read", {"uri": uri}))

    def subscribe(self, uri: str) -> None:
        self._send_request("resources/subscribe", {"uri": uri})

    def unsubscribe(self, uri: str) -> None:
        self._send_request("resources/unsubscribe", {"uri": uri})

    def list_prompts_by_page(self, cursor: Optional[str] = None) -> dict[str, Any]:
        return self._list_page("prompts/list", cursor)

    def list_prompts(self) -> dict[str, Any]:
        """List every prompt, following cursors until the last page."""
        return self._list_all("prompts/list", "prompts")

    def get_prompt(self, name: str, arguments: Optional[dict[str, str]] = None) -> dict[str, Any]:
        params: dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = dict(arguments)
        return _as_object(self._send_request("prompts/get", params))

    def list_tools_by_page(self, cursor: Optional[str] = None) -> dict[str, Any]:
        return self._list_page("tools/list", cursor)

    def list_tools(self) -> dict[str, Any]:
        """List every tool, following cursors until the last page."""
        return self._list_all("tools/list", "tools")

    def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        params: dict[str, Any] = {"name": name}
        if arguments:
            params["arguments"] = dict(arguments)
        return _as_object(self._send_request("tools/call", params))

    def set_level(self, level: str) -> None:
        self._send_request("logging/setLevel", {"level": level})

    def complete(self, ref: dict[str, Any], argument_name: str, argument_value: str) -> dict[str, Any]:
        params = {
            "ref": dict(ref),
            "argument": {"name": argument_name, "value": argument_value},
        }
        return _as_object(self._send_request("completion/complete", params))

    @property
    def transport(self) -> Optional[Transport]:
        """The underlying transport."""
        return self._transport

    @property
    def server_capabilities(self) -> dict[str, Any]:
        """The capabilities the server announced during initialization."""
        return self._server_capabilities

    @property
    def client_capabilities(self) -> dict[str, Any]:
        return self._client_capabilities


def new_stdio_client(command: str, env: Optional[list[str]] = None, *args: str) -> Client:
    """Launch a server subprocess and return a client connected to it, already started."""
    transport = StdioTransport(command, env, *args)
    try:
        transport.start()
    except TransportError as exc:
        raise TransportError(f"failed to start stdio transport: {exc}") from exc
    client = Client(transport)
    client._install_notification_handler()
    return client


def new_sse_client(
    base_url: str,
    headers: Optional[dict[str, str]] = None,
    header_func: Optional[HeaderFunc] = None,
    http_client: Optional[httpx.Client] = None,
) -> Client:
    """Return a client that talks to an SSE server; call start() before use."""
    return Client(
        SSETransport(base_url, headers=headers, header_func=header_func, http_client=http_client)
    )


def new_streamable_http_client(
    base_url: str,
    headers: Optional[dict[str, str]] = None,
    header_func: Optional[HeaderFunc] = None,
    timeout: Optional[float] = None,
) -> Client:
    """Return a client that talks to a Streamable HTTP server."""
    return Client(
        StreamableHTTPTransport(base_url, headers=headers, header_func=header_func, timeout=timeout)
    )


def get_endpoint(client: Client) -> Optional[str]:
    """The message endpoint of a client on an SSE transport."""
    transport = client.transport
    if not isinstance(transport, SSETransport):
        raise TypeError("client does not use an SSE transport")
    return transport.endpoint


def get_stderr(client: Client) -> Optional[IO[Any]]:
    """The server's error stream for a stdio client, or None for other transports."""
    transport = client.transport
    if not isinstance(transport, StdioTransport):
        return None
    return transport.stderr()


__all__: list[str] = [
    "Client",
    "LATEST_PROTOCOL_VERSION",
    "MCPError",
    "get_endpoint",
    "get_stderr",
    "new_sse_client",
    "new_stdio_client",
    "new_streamable_http_client",
]

_unused: Callable[..., Any] = _paginated_params