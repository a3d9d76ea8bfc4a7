"""JSON-RPC over Streamable HTTP: one POST per message, answered by JSON or an event stream."""

from __future__ import annotations

import json
import threading
from logging import getLogger
from typing import Any, Optional
from urllib.parse import urlsplit

import httpx

from .events import iter_sse_events
from .jsonrpc import (
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    NotificationHandler,
    Transport,
    TransportError,
)
from .sse import HeaderFunc

logger = getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
_CLOSE_TIMEOUT = 5.0


def _parse_base_url(base_url: str) -> str:
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"invalid URL: {base_url!r}")
    return base_url


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


class StreamableHTTPTransport(Transport):
    """Posts each JSON-RPC message to the server as its own HTTP request.

    A response body is either a single JSON-RPC response or an event stream
    that may carry notifications before ending with the response. Batching,
    listening for server messages between requests, stream resumption and
    server-to-client requests are not supported.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        header_func: Optional[HeaderFunc] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._base_url = _parse_base_url(base_url)
        self._headers = dict(headers or {})
        self._header_func = header_func
        self._client = httpx.Client(timeout=timeout)

        self._session_id = ""
        self._session_lock = threading.Lock()
        self._handler: Optional[NotificationHandler] = None
        self._handler_lock = threading.Lock()
        self._closed = False
        self._state_lock = threading.Lock()
        self._active: set[httpx.Response] = set()
        self._active_lock = threading.Lock()

    def start(self) -> None:
        """Nothing to open: every message travels on its own request."""

    def _request_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        session_id = self.session_id
        if session_id:
            headers[SESSION_HEADER] = session_id
        headers.update(self._headers)
        if self._header_func is not None:
            headers.update(self._header_func())
        return headers

    def send_request(self, request: JSONRPCRequest, timeout: Optional[float] = None) -> JSONRPCResponse:
        """Post a request and return the server's response to it."""
        if self._closed:
            raise TransportError("transport has been closed")
        if timeout is not None and timeout <= 0:
            raise TimeoutError("deadline exceeded before sending request")

        session_id = self.session_id
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = timeout
        try:
            http_request = self._client.build_request(
                "POST",
                self._base_url,
                content=request.to_json().encode("utf-8"),
                headers=self._request_headers(),
                **extra,
            )
            response = self._client.send(http_request, stream=True)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"failed to send request: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to send request: {exc}") from exc
        except RuntimeError as exc:
            raise TransportError("transport has been closed") from exc

        with self._active_lock:
            self._active.add(response)
        try:
            return self._handle_response(request, response, session_id)
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"timed out reading response: {exc}") from exc
        except (TransportError, TimeoutError):
            raise
        except Exception as exc:
            if self._closed:
                raise TransportError("transport has been closed") from exc
            if isinstance(exc, (httpx.HTTPError, httpx.StreamError)):
                raise TransportError(f"failed to read response: {exc}") from exc
            raise
        finally:
            with self._active_lock:
                self._active.discard(response)
            try:
                response.close()
            except Exception:
                pass

    def _handle_response(
        self, request: JSONRPCRequest, response: httpx.Response, session_id: str
    ) -> JSONRPCResponse:
        status = response.status_code
        if status not in (200, 202):
            if status == 404:
                with self._session_lock:
                    if self._session_id == session_id:
                        self._session_id = ""
                raise TransportError("session terminated (404). need to re-initialize")
            body = response.read()
            try:
                return JSONRPCResponse.from_json(body)
            except ValueError:
                text = body.decode("utf-8", errors="replace")
                raise TransportError(f"request failed with status {status}: {text}") from None

        if request.method == "initialize":
            new_session = response.headers.get(SESSION_HEADER, "")
            if new_session:
                with self._session_lock:
                    self._session_id = new_session

        content_type = response.headers.get("Content-Type", "")
        media_type = _media_type(content_type)
        if media_type == "application/json":
            body = response.read()
            try:
                message = JSONRPCResponse.from_json(body)
            except ValueError as exc:
                raise TransportError(f"failed to decode response: {exc}") from exc
            if message.id is None:
                raise TransportError(f"response should contain RPC id: {message}")
            return message
        if media_type == "text/event-stream":
            return self._read_event_stream(response)
        raise TransportError(f"unexpected content type: {content_type}")

    def _read_event_stream(self, response: httpx.Response) -> JSONRPCResponse:
        for _event, data in iter_sse_events(response.iter_lines()):
            if self._closed:
                raise TransportError("transport has been closed")
            try:
                message = json.loads(data)
            except ValueError as exc:
                logger.warning("failed to unmarshal message: %s", exc)
                continue
            if not isinstance(message, dict):
                logger.warning("failed to unmarshal message: not an object")
                continue

            if message.get("id") is None:
                try:
                    notification = JSONRPCNotification.from_dict(message)
                except ValueError as exc:
                    logger.warning("failed to unmarshal notification: %s", exc)
                    continue
                self._notify(notification)
                continue

            try:
                return JSONRPCResponse.from_dict(message)
            except ValueError as exc:
                logger.warning("failed to unmarshal message: %s", exc)
        raise TransportError("unexpected nil response")

    def _notify(self, notification: JSONRPCNotification) -> None:
        with self._handler_lock:
            handler = self._handler
        if handler is None:
            return
        try:
            handler(notification)
        except Exception:
            logger.exception("notification handler failed")

    def send_notification(self, notification: JSONRPCNotification) -> None:
        """Post a notification; only the status of the reply is checked."""
        try:
            response = self._client.post(
                self._base_url,
                content=notification.to_json().encode("utf-8"),
                headers=self._request_headers(),
            )
        except httpx.TimeoutException as exc:
            raise TimeoutError(f"failed to send request: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to send request: {exc}") from exc
        except RuntimeError as exc:
            raise TransportError("transport has been closed") from exc
        if response.status_code not in (200, 202):
            raise TransportError(
                f"notification failed with status {response.status_code}: {response.text}"
            )

    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        with self._handler_lock:
            self._handler = handler

    def close(self) -> None:
        """Cancel requests in flight and tell the server the session is over."""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        with self._active_lock:
            active = list(self._active)
        for response in active:
            try:
                response.close()
            except Exception:
                pass

        with self._session_lock:
            session_id = self._session_id
            self._session_id = ""

        if session_id:
            threading.Thread(
                target=self._terminate_session,
                args=(session_id,),
                name="streamable-http-close",
                daemon=True,
            ).start()
        else:
            self._client.close()

    def _terminate_session(self, session_id: str) -> None:
        try:
            self._client.delete(
                self._base_url,
                headers={SESSION_HEADER: session_id},
                timeout=_CLOSE_TIMEOUT,
            )
        except (httpx.HTTPError, RuntimeError) as exc:
            logger.warning("failed to send close request: %s", exc)
        finally:
            self._client.close()

    @property
    def session_id(self) -> str:
        """The session id the server assigned on initialize, or an empty string."""
        with self._session_lock:
            return self._session_id