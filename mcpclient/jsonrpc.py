"""JSON-RPC 2.0 message types and the transport interface shared by all transports."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

JSONRPC_VERSION = "2.0"

RequestId = Union[int, str]
NotificationHandler = Callable[["JSONRPCNotification"], None]


class TransportError(Exception):
    """Raised when a transport cannot deliver a message or receive its answer."""


def _normalize_id(value: Any) -> Optional[RequestId]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("request id must be a string or an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value
    raise ValueError(f"request id must be a string or an integer, got {value!r}")


def request_id_key(request_id: RequestId) -> str:
    """Return a lookup key that keeps integer and string ids apart."""
    if request_id is None or isinstance(request_id, bool):
        raise TypeError(f"invalid request id: {request_id!r}")
    if isinstance(request_id, float) and request_id.is_integer():
        request_id = int(request_id)
    if isinstance(request_id, int):
        return f"int:{request_id}"
    if isinstance(request_id, str):
        return f"str:{request_id}"
    raise TypeError(f"invalid request id: {request_id!r}")


def _dumps(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


@dataclass
class JSONRPCRequest:
    """A request that expects a response carrying the same id."""

    id: RequestId
    method: str
    params: Any = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data

    def to_json(self) -> str:
        return _dumps(self.to_dict())


@dataclass
class JSONRPCError:
    """The error object of a failed JSON-RPC response."""

    code: int
    message: str
    data: Any = None


@dataclass
class JSONRPCResponse:
    """A response to a request: a result or an error."""

    id: Optional[RequestId]
    result: Any = None
    error: Optional[JSONRPCError] = None
    jsonrpc: str = JSONRPC_VERSION

    @classmethod
    def from_dict(cls, data: Any) -> "JSONRPCResponse":
        if not isinstance(data, dict):
            raise ValueError("JSON-RPC message must be an object")
        error = None
        raw_error = data.get("error")
        if raw_error is not None:
            if not isinstance(raw_error, dict):
                raise ValueError("JSON-RPC error must be an object")
            code = raw_error.get("code", 0)
            if isinstance(code, bool) or not isinstance(code, int):
                raise ValueError("JSON-RPC error code must be an integer")
            message = raw_error.get("message", "")
            if not isinstance(message, str):
                raise ValueError("JSON-RPC error message must be a string")
            error = JSONRPCError(code=code, message=message, data=raw_error.get("data"))
        return cls(
            id=_normalize_id(data.get("id")),
            result=data.get("result"),
            error=error,
            jsonrpc=data.get("jsonrpc", JSONRPC_VERSION),
        )

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> "JSONRPCResponse":
        return cls.from_dict(json.loads(text))


@dataclass
class JSONRPCNotification:
    """A one-way message that carries no id and gets no response."""

    method: str
    params: Optional[dict[str, Any]] = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data

    def to_json(self) -> str:
        return _dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> "JSONRPCNotification":
        if not isinstance(data, dict):
            raise ValueError("JSON-RPC message must be an object")
        method = data.get("method")
        if not isinstance(method, str):
            raise ValueError("notification must have a string method")
        params = data.get("params")
        if params is not None and not isinstance(params, dict):
            raise ValueError("notification params must be an object")
        return cls(method=method, params=params, jsonrpc=data.get("jsonrpc", JSONRPC_VERSION))


class Transport(ABC):
    """The channel a client uses to exchange JSON-RPC messages with a server."""

    @abstractmethod
    def start(self) -> None:
        """Open the connection. Call once."""

    @abstractmethod
    def send_request(
        self, request: JSONRPCRequest, timeout: Optional[float] = None
    ) -> JSONRPCResponse:
        """Send a request and wait for its response."""

    @abstractmethod
    def send_notification(self, notification: JSONRPCNotification) -> None:
        """Send a notification to the server."""

    @abstractmethod
    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        """Set the handler for server notifications; earlier ones are dropped."""

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    def __enter__(self) -> "Transport":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()