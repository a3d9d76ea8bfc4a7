"""JSON-RPC over the standard streams of a child process, or of any pair of streams."""

from __future__ import annotations

import io
import json
import os
import queue
import subprocess
import threading
from logging import getLogger
from typing import IO, Any, Optional

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


class StdioTransport(Transport):
    """Exchanges newline-delimited JSON-RPC messages with a subprocess.

    Responses are routed to waiting requests by id; messages without an id are
    passed to the notification handler.
    """

    def __init__(self, command: str, env: Optional[list[str]] = None, *args: str) -> None:
        self._command = command
        self._env = list(env or [])
        self._args = list(args)
        self._process: Optional[subprocess.Popen] = None
        self._stdin: Optional[IO[Any]] = None
        self._stdout: Optional[IO[Any]] = None
        self._stderr: Optional[IO[Any]] = None
        self._pending: dict[str, queue.Queue] = {}
        self._pending_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._handler: Optional[NotificationHandler] = None
        self._handler_lock = threading.Lock()
        self._closed = threading.Event()
        self._reader_finished = threading.Event()
        self._reader: Optional[threading.Thread] = None

    @classmethod
    def from_streams(cls, input: IO[Any], output: IO[Any], logging: Optional[IO[Any]]) -> "StdioTransport":
        """Build a transport over existing streams instead of a subprocess."""
        transport = cls("")
        transport._stdout = input
        transport._stdin = output
        transport._stderr = logging
        return transport

    def start(self) -> None:
        if self._reader is not None:
            raise TransportError("transport has already started")
        self._spawn()
        self._reader = threading.Thread(target=self._read_responses, name="stdio-reader", daemon=True)
        self._reader.start()

    def _spawn(self) -> None:
        if not self._command:
            return
        env = dict(os.environ)
        for entry in self._env:
            key, sep, value = entry.partition("=")
            if sep:
                env[key] = value
        try:
            process = subprocess.Popen(
                [self._command, *self._args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise TransportError(f"failed to start command: {exc}") from exc
        self._process = process
        self._stdin = process.stdin
        self._stdout = process.stdout
        self._stderr = process.stderr

    def _read_responses(self) -> None:
        try:
            while not self._closed.is_set() and self._stdout is not None:
                line = self._stdout.readline()
                if not line:
                    break
                self._dispatch(line)
        except (OSError, ValueError) as exc:
            if not self._closed.is_set():
                logger.warning("error reading response: %s", exc)
        finally:
            self._reader_finished.set()
            self._fail_pending()

    def _dispatch(self, line: Any) -> None:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        try:
            message = json.loads(line)
        except ValueError:
            return
        if not isinstance(message, dict):
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
        except ValueError:
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

    def _write(self, payload: str) -> None:
        assert self._stdin is not None
        with self._write_lock:
            if isinstance(self._stdin, io.TextIOBase):
                self._stdin.write(payload)
            else:
                self._stdin.write(payload.encode("utf-8"))
            self._stdin.flush()

    def send_request(self, request: JSONRPCRequest, timeout: Optional[float] = None) -> JSONRPCResponse:
        if self._stdin is None:
            raise TransportError("stdio client not started")
        if self._closed.is_set():
            raise TransportError("transport has been closed")

        payload = request.to_json() + "\n"
        key = request_id_key(request.id)
        slot: queue.Queue = queue.Queue(maxsize=1)
        with self._pending_lock:
            self._pending[key] = slot

        try:
            self._write(payload)
        except (OSError, ValueError) as exc:
            self._forget(key)
            raise TransportError(f"failed to write request: {exc}") from exc

        if self._reader_finished.is_set() and slot.empty():
            self._forget(key)
            raise TransportError("connection has been closed")

        try:
            response = slot.get(timeout=None if timeout is None else max(timeout, 0.0))
        except queue.Empty:
            self._forget(key)
            raise TimeoutError("timed out waiting for response") from None
        if response is None:
            raise TransportError("connection has been closed")
        return response

    def send_notification(self, notification: JSONRPCNotification) -> None:
        if self._stdin is None:
            raise TransportError("stdio client not started")
        try:
            self._write(notification.to_json() + "\n")
        except (OSError, ValueError) as exc:
            raise TransportError(f"failed to write notification: {exc}") from exc

    def set_notification_handler(self, handler: Optional[NotificationHandler]) -> None:
        with self._handler_lock:
            self._handler = handler

    def close(self) -> None:
        """Close the streams and wait for the subprocess to exit."""
        if self._closed.is_set():
            return
        self._closed.set()

        for stream, name in ((self._stdin, "stdin"), (self._stderr, "stderr")):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as exc:
                raise TransportError(f"failed to close {name}: {exc}") from exc

        if self._process is not None:
            returncode = self._process.wait()
            if self._reader is not None:
                self._reader.join(timeout=5)
            if self._process.stdout is not None:
                self._process.stdout.close()
            if returncode != 0:
                raise TransportError(f"command exited with status {returncode}")

    def stderr(self) -> Optional[IO[Any]]:
        """The error stream of the subprocess, for reading its logs."""
        return self._stderr