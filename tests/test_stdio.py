import io
import json
import os
import queue
import sys
import textwrap
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from mcpclient.jsonrpc import JSONRPCNotification, JSONRPCRequest, TransportError
from mcpclient.stdio import StdioTransport

MOCK_SERVER = textwrap.dedent(
    """
    import json
    import sys

    sys.stderr.write(json.dumps({"msg": "launch successful"}) + "\\n")
    sys.stderr.flush()

    def emit(message):
        sys.stdout.write(json.dumps(message) + "\\n")
        sys.stdout.flush()

    while True:
        line = sys.stdin.readline()
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        request = json.loads(line)
        method = request.get("method")
        if "id" not in request:
            if method == "debug/echo_notification":
                emit({"jsonrpc": "2.0", "method": "debug/test", "params": request})
            continue
        if method == "debug/echo_error_string":
            emit({"jsonrpc": "2.0", "id": request["id"],
                  "error": {"code": -1, "message": json.dumps(request)}})
        else:
            emit({"jsonrpc": "2.0", "id": request["id"], "result": request})
    """
)


@pytest.fixture(scope="module")
def server_script(tmp_path_factory):
    path = tmp_path_factory.mktemp("mockserver") / "mock_server.py"
    path.write_text(MOCK_SERVER)
    return str(path)


@pytest.fixture
def transport(server_script):
    stdio = StdioTransport(sys.executable, None, server_script)
    stdio.start()
    yield stdio
    stdio.close()


def test_send_request(transport):
    request = JSONRPCRequest(
        id=1, method="debug/echo", params={"string": "hello world", "array": [1, 2, 3]}
    )
    response = transport.send_request(request, timeout=5)
    result = response.result
    assert result["jsonrpc"] == "2.0"
    assert result["id"] == 1
    assert result["method"] == "debug/echo"
    assert result["params"]["string"] == "hello world"
    assert len(result["params"]["array"]) == 3


def test_send_request_with_expired_timeout(transport):
    with pytest.raises(TimeoutError):
        transport.send_request(JSONRPCRequest(id=3, method="debug/echo"), timeout=0)


def test_send_notification_and_handler(transport):
    received = queue.Queue()
    transport.set_notification_handler(received.put)
    notification = JSONRPCNotification(method="debug/echo_notification", params={"test": "value"})
    transport.send_notification(notification)
    got = received.get(timeout=5)
    assert got.method == "debug/test"
    assert got.params == notification.to_dict()


def test_multiple_requests(transport):
    def send(index):
        request = JSONRPCRequest(
            id=100 + index, method="debug/echo", params={"requestIndex": index}
        )
        return transport.send_request(request, timeout=5)

    with ThreadPoolExecutor(max_workers=5) as pool:
        responses = list(pool.map(send, range(5)))

    for index, response in enumerate(responses):
        assert response.id == 100 + index
        assert response.result["id"] == 100 + index
        assert response.result["method"] == "debug/echo"
        assert response.result["params"]["requestIndex"] == index


def test_response_error(transport):
    request = JSONRPCRequest(id=100, method="debug/echo_error_string")
    response = transport.send_request(request, timeout=5)
    assert response.error is not None
    echoed = json.loads(response.error.message)
    assert echoed["method"] == "debug/echo_error_string"
    assert echoed["id"] == 100
    assert echoed["jsonrpc"] == "2.0"


def test_send_request_with_string_id(transport):
    request = JSONRPCRequest(
        id="request-123", method="debug/echo", params={"string": "string id test", "array": [4, 5, 6]}
    )
    response = transport.send_request(request, timeout=5)
    assert response.id == "request-123"
    assert response.result["id"] == "request-123"
    assert response.result["jsonrpc"] == "2.0"
    assert response.result["params"]["string"] == "string id test"
    assert len(response.result["params"]["array"]) == 3


def test_stderr_carries_server_log(transport):
    record = json.loads(transport.stderr().readline())
    assert record["msg"] == "launch successful"


def test_invalid_command():
    stdio = StdioTransport("non_existent_command", None)
    with pytest.raises(TransportError):
        stdio.start()


def test_request_before_start(server_script):
    stdio = StdioTransport(sys.executable, None, server_script)
    with pytest.raises(TransportError, match="stdio client not started"):
        stdio.send_request(JSONRPCRequest(id=99, method="ping"), timeout=0.2)


def test_request_after_close(server_script):
    stdio = StdioTransport(sys.executable, None, server_script)
    stdio.start()
    stdio.close()
    stdio.close()
    with pytest.raises(TransportError):
        stdio.send_request(JSONRPCRequest(id=1, method="ping"), timeout=1)


def test_start_twice_fails(transport):
    with pytest.raises(TransportError):
        transport.start()


def test_from_streams_skips_garbage_lines():
    to_server_r, to_server_w = os.pipe()
    to_client_r, to_client_w = os.pipe()
    server_in = os.fdopen(to_server_r, "rb")
    server_out = os.fdopen(to_client_w, "wb")
    logging_stream = io.BytesIO()

    def serve():
        request = json.loads(server_in.readline())
        server_out.write(b"this is not json\n")
        reply = {"jsonrpc": "2.0", "id": request["id"], "result": {"method": request["method"]}}
        server_out.write(json.dumps(reply).encode() + b"\n")
        server_out.flush()

    worker = threading.Thread(target=serve, daemon=True)
    worker.start()

    stdio = StdioTransport.from_streams(
        os.fdopen(to_client_r, "rb"), os.fdopen(to_server_w, "wb"), logging_stream
    )
    stdio.start()
    response = stdio.send_request(JSONRPCRequest(id=42, method="ping"), timeout=5)
    worker.join(timeout=5)
    assert response.id == 42
    assert response.result == {"method": "ping"}
    assert stdio.stderr() is logging_stream
    stdio.close()
    server_out.close()
    server_in.close()
    assert logging_stream.closed