"""JSON-RPC over server-sent events: responses arrive on an event stream, requests go by POST."""

from __future__ import annotations

import json
import queue
import threading
import time
from logging import getLogger
from typing import Any, Callable, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from .events import iter_sse_events
from .jsonrpc import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    NotificationHandler,
    Transport,
    TransportError,
    request_id_key,
)

logger = getLogger(__name__)

HeaderFunc = Callable[[], dict[str, str]]


def _parse_base_url(base_url: str) -> str:
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"invalid URL: {base_url!r}")
    return base_url


class SSETransport(Transport):
    """Keeps an event stream open to receive responses and notifications.

    The server first announces, in an ``endpoint`` event, where requests are to be
    posted; ``message`` events then carry JSON-RPC responses and notifications.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        header_func: Optional[HeaderFunc] = None,
        http_client: Optional[httpx.Client] = None,
        endpoint_timeout: float = 30.0,
    ) -> None:
        self._base_url = _parse_base_url(base_url)
        self._headers = dict(headers or {})
        self._header_func = header_func
        self._owns_client = http_client is None
        self._client = http_client if http_client is not None else httpx.Client(timeout=None)
        self._endpoint_timeout = endpoint_timeout

        self._endpoint: Optional[str] = None
        self._endpoint_event = threading.Event()
        self._stream_done = threading.Event()
        self._stream_error: Optional[BaseException] = None
        self._stream_response: Optional[httpx.Response] = None
        self._reader: Optional[threading.Thread] = None

        self._pending: dict[str, queue.Queue] = {}
        self._pending_lock = threading.Lock()
        self._handler: Optional[NotificationHandler] = None
        self._handler_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._started = False
        self._closed = False

    def _extra_headers(self) -> dict[str, str]:
        headers = dict(self._headers)
        if self._header_func is not None:
            headers.update(self._header_func())
        return headers

    def start(self, timeout: Optional[float] = None) -> None:
        """Open the event stream and wait until the server names its endpoint."""
        if self._started or self._reader is not None:
            raise TransportError("has already started")

        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
        headers.update(self._extra_headers())
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = httpx.Timeout(timeout, read=None)

        try:
            request = self._client.build_request("GET", self._base_url, headers=headers, **extra)
            response = self._client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"failed to connect to SSE stream: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to connect to SSE stream: {exc}") from exc

        if response.status_code != 200:
            response.close()
            raise TransportError(f"unexpected status code: {response.status_code}")

        self._stream_response = response
        self._reader = threading.Thread(
            target=self._read_stream, args=(response,), name="sse-reader", daemon=True
        )
        self._reader.start()

        wait = self._endpoint_timeout if timeout is None else min(timeout, self._endpoint_timeout)
        signalled = self._endpoint_event.wait(max(wait, 0.0))
        if self._endpoint is None:
            self._close_stream()
            if isinstance(self._stream_error, httpx.TimeoutException):
                raise TimeoutError(f"timed out reading SSE stream: {self._stream_error}")
            if not signalled:
                raise TransportError("timeout waiting for endpoint")
            raise TransportError("SSE stream closed before endpoint was received")

        self._started = True

    def _read_stream(self, response: httpx.Response) -> None:
        try:
            for event, data in iter_sse_events(response.iter_lines()):
                self._handle_event(event, data)
        except Exception as exc:  # the stream may fail in many ways once closed
            self._stream_error = exc
            if not self._closed:
                logger.warning("SSE stream error: %s", exc)
        finally:
            try:
                response.close()
            except Exception:
                pass
            self._stream_done.set()
            self._endpoint_event.set()
            self._fail_pending()

    def _handle_event(self, event: str, data: str) -> None:
        if event == "endpoint":
            endpoint = urljoin(self._base_url, data)
            if urlsplit(endpoint).netloc != urlsplit(self._base_url).netloc:
                logger.warning("endpoint origin does not match connection origin")
                return
            self._endpoint = endpoint
            self._endpoint_event.set()
        elif event == "message":
            self._handle_message(data)

    def _handle_message(self, data: str) -> None:
        try:
            message = json.loads(data)
        except ValueError as exc:
            logger.warning("error unmarshaling message: %s", exc)
            return
        if not isinstance(message, dict):
            logger.warning("error unmarshaling message: not an object")
            return

        if message.get("id") is None:
            try:
                notification = JSONRPCNotification.from_dict(message)
            except ValueError:
                return
            with self._handler_lock:
                handler = self._handler
            if handler is not None:
                try:
                    handler(notification)
                except Exception:
                    logger.exception("notification handler failed")
            return

        try:
            response = JSONRPCResponse.from_dict(message)
        except ValueError as exc:
            logger.warning("error unmarshaling message: %s", exc)
            return
        with self._pending_lock:
            slot = self._pending.pop(request_id_key(response.id), None)
        if slot is not None:
            slot.put(response)

    def _fail_pending(self) -> None:
        with self._pending_lock:
            slots = list(self._pending.values())
            self._pending.clear()
        for slot in slots:
            slot.put(None)

    def _forget(self, key: str) -> None:
        with self._pending_lock:
            self._pending.pop(key, None)

    def _post(self, body: str, timeout: Optional[float]) -> httpx.Response:
        assert self._endpoint is not None
        headers = {"Content-Type": "application/json"}
        headers.update(self._extra_headers())
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout
        return self._client.post(self._endpoint, content=body.encode("utf-8"), headers=headers, **extra)

    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        with self._handler_lock:
            self._handler = handler

    def send_request(self, request: JSONRPCRequest, timeout: Optional[float] = None) -> JSONRPCResponse:
        """Post a request and wait for its response to arrive on the stream."""
        if not self._started:
            raise TransportError("transport not started yet")
        if self._closed:
            raise TransportError("transport has been closed")
        if self._endpoint is None:
            raise TransportError("endpoint not received")

        deadline = None if timeout is None else time.monotonic() + timeout
        if timeout is not None and timeout <= 0:
            raise TimeoutError("deadline exceeded before sending request")

        body = request.to_json()
        key = request_id_key(request.id)
        slot: queue.Queue = queue.Queue(maxsize=1)
        with self._pending_lock:
            self._pending[key] = slot

        try:
            response = self._post(body, timeout)
        except httpx.TimeoutException as exc:
            self._forget(key)
            raise TimeoutError(f"failed to send request: {exc}") from exc
        except httpx.HTTPError as exc:
            self._forget(key)
            raise TransportError(f"failed to send request: {exc}") from exc

        if response.status_code not in (200, 202):
            self._forget(key)
            raise TransportError(
                f"request failed with status {response.status_code}: {response.text}"
            )

        if self._stream_done.is_set() and slot.empty():
            self._forget(key)
            raise TransportError("connection has been closed")

        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        try:
            result = slot.get(timeout=remaining)
        except queue.Empty:
            self._forget(key)
            raise TimeoutError("timed out waiting for response") from None
        if result is None:
            raise TransportError("connection has been closed")
        return result

    def send_notification(self, notification: JSONRPCNotification) -> None:
        """Post a notification; no response is awaited."""
        if self._endpoint is None:
            raise TransportError("endpoint not received")
        try:
            response = self._post(notification.to_json(), None)
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to send notification: {exc}") from exc
        if response.status_code not in (200, 202):
            raise TransportError(
                f"notification failed with status {response.status_code}: {response.text}"
            )

    def _close_stream(self) -> None:
        response = self._stream_response
        if response is not None:
            try:
                response.close()
            except Exception:
                pass

    def close(self) -> None:
        """Stop the event stream and fail every request still waiting."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True
        self._close_stream()
        self._fail_pending()
        if self._owns_client:
            try:
                self._client.close()
            except Exception:
                pass

    @property
    def endpoint(self) -> Optional[str]:
        """The URL requests are posted to, once the server has announced it."""
        return self._endpoint

    @property
    def base_url(self) -> str:
        """The URL of the event stream."""
        return self._base_url