import json
import sys

import pytest

from mcpclient.client import (
    Client,
    MCPError,
    get_endpoint,
    get_stderr,
    new_sse_client,
    new_stdio_client,
)
from mcpclient.jsonrpc import (
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCResponse,
    Transport,
    TransportError,
)

MOCK_SERVER = r'''
import json
import sys

sys.stderr.write(json.dumps({"level": "INFO", "msg": "launch successful"}) + "\n")
sys.stderr.flush()

RESULTS = {
    "initialize": {
        "protocolVersion": "1.0",
        "serverInfo": {"name": "mock-server", "version": "1.0.0"},
        "capabilities": {"tools": {"listChanged": True}},
    },
    "ping": {},
    "resources/list": {"resources": [{"uri": "test://resource", "name": "Test Resource"}]},
    "resources/read": {
        "contents": [{"uri": "test://resource", "mimeType": "text/plain", "text": "test content"}]
    },
    "resources/subscribe": {},
    "resources/unsubscribe": {},
    "prompts/list": {"prompts": [{"name": "test-prompt", "description": "A test prompt"}]},
    "prompts/get": {
        "messages": [{"role": "assistant", "content": {"type": "text", "text": "Test prompt"}}]
    },
    "tools/list": {"tools": [{"name": "test-tool", "inputSchema": {"type": "object"}}]},
    "tools/call": {"content": [{"type": "text", "text": "Tool result"}]},
    "logging/setLevel": {},
    "completion/complete": {"completion": {"values": ["test completion"]}},
}

for line in sys.stdin:
    try:
        message = json.loads(line)
    except ValueError:
        continue
    if message.get("id") is None:
        continue
    method = message.get("method")
    if method in RESULTS:
        reply = {"jsonrpc": "2.0", "id": message["id"], "result": RESULTS[method]}
    else:
        reply = {
            "jsonrpc": "2.0",
            "id": message["id"],
            "error": {"code": -32601, "message": "method not found"},
        }
    sys.stdout.write(json.dumps(reply) + "\n")
    sys.stdout.flush()
'''


@pytest.fixture(scope="module")
def stdio_session(tmp_path_factory):
    script = tmp_path_factory.mktemp("mock") / "mock_server.py"
    script.write_text(MOCK_SERVER, encoding="utf-8")
    client = new_stdio_client(sys.executable, [], str(script))
    stderr = get_stderr(client)
    log_line = stderr.readline()
    init_result = client.initialize(
        protocol_version="1.0",
        client_info={"name": "test-client", "version": "1.0.0"},
        capabilities={"roots": {"listChanged": True}},
    )
    yield client, init_result, log_line
    client.close()


def test_stdio_initialize(stdio_session):
    client, result, _ = stdio_session
    assert result["serverInfo"]["name"] == "mock-server"
    assert client.server_capabilities == {"tools": {"listChanged": True}}


def test_stdio_ping(stdio_session):
    client, _, _ = stdio_session
    assert client.ping() is None


def test_stdio_list_resources(stdio_session):
    client, _, _ = stdio_session
    assert len(client.list_resources()["resources"]) == 1


def test_stdio_read_resource(stdio_session):
    client, _, _ = stdio_session
    result = client.read_resource("test://resource")
    assert len(result["contents"]) == 1
    assert result["contents"][0]["text"] == "test content"


def test_stdio_subscribe_and_unsubscribe(stdio_session):
    client, _, _ = stdio_session
    assert client.subscribe("test://resource") is None
    assert client.unsubscribe("test://resource") is None


def test_stdio_list_prompts(stdio_session):
    client, _, _ = stdio_session
    assert len(client.list_prompts()["prompts"]) == 1


def test_stdio_get_prompt(stdio_session):
    client, _, _ = stdio_session
    assert len(client.get_prompt("test-prompt")["messages"]) == 1


def test_stdio_list_tools(stdio_session):
    client, _, _ = stdio_session
    assert len(client.list_tools()["tools"]) == 1


def test_stdio_call_tool(stdio_session):
    client, _, _ = stdio_session
    result = client.call_tool("test-tool", {"param1": "value1"})
    assert len(result["content"]) == 1


def test_stdio_set_level(stdio_session):
    client, _, _ = stdio_session
    assert client.set_level("info") is None


def test_stdio_complete(stdio_session):
    client, _, _ = stdio_session
    result = client.complete({"type": "ref/prompt", "name": "test-prompt"}, "test-arg", "test-value")
    assert len(result["completion"]["values"]) == 1


def test_stdio_logs(stdio_session):
    _, _, log_line = stdio_session
    record = json.loads(log_line)
    assert record["msg"] == "launch successful"


class FakeTransport(Transport):
    def __init__(self, responder):
        self.responder = responder
        self.requests = []
        self.notifications = []
        self.handler = None
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def send_request(self, request, timeout=None):
        self.requests.append(request)
        return self.responder(request)

    def send_notification(self, notification):
        self.notifications.append(notification)

    def set_notification_handler(self, handler):
        self.handler = handler

    def close(self):
        self.closed = True


def _reply(request, result):
    return JSONRPCResponse(id=request.id, result=result)


def _init_result():
    return {
        "protocolVersion": "2025-03-26",
        "serverInfo": {"name": "fake", "version": "0.1"},
        "capabilities": {"prompts": {}},
    }


def _ready_client(responder):
    def wrapped(request):
        if request.method == "initialize":
            return _reply(request, _init_result())
        return responder(request)

    transport = FakeTransport(wrapped)
    client = Client(transport)
    client.start()
    client.initialize(client_info={"name": "test-client", "version": "1.0.0"})
    return client, transport


def test_request_before_initialize_fails():
    transport = FakeTransport(lambda request: _reply(request, {}))
    client = Client(transport)
    client.start()
    with pytest.raises(RuntimeError, match="client not initialized"):
        client.list_tools()
    assert transport.requests == []


def test_start_without_transport_fails():
    with pytest.raises(RuntimeError, match="transport is nil"):
        Client(None).start()


def test_initialize_sends_params_and_notification():
    client, transport = _ready_client(lambda request: _reply(request, {}))
    first = transport.requests[0]
    assert first.method == "initialize"
    assert first.params == {
        "protocolVersion": "2025-03-26",
        "clientInfo": {"name": "test-client", "version": "1.0.0"},
        "capabilities": {},
    }
    assert [n.method for n in transport.notifications] == ["notifications/initialized"]
    assert client.server_capabilities == {"prompts": {}}


def test_request_ids_increase():
    client, transport = _ready_client(lambda request: _reply(request, {}))
    client.ping()
    client.ping()
    assert [r.id for r in transport.requests] == [1, 2, 3]
    assert transport.requests[1].params is None


def test_error_response_raises_mcp_error():
    def responder(request):
        return JSONRPCResponse(id=request.id, error=JSONRPCError(code=-32601, message="nope"))

    client, _ = _ready_client(responder)
    with pytest.raises(MCPError, match="nope") as info:
        client.call_tool("missing")
    assert info.value.code == -32601


def test_non_object_result_raises():
    client, _ = _ready_client(lambda request: _reply(request, "oops"))
    with pytest.raises(MCPError, match="failed to unmarshal response"):
        client.read_resource("test://x")


def test_transport_error_is_wrapped():
    def responder(request):
        raise TransportError("broken pipe")

    client, _ = _ready_client(responder)
    with pytest.raises(TransportError, match="transport error: broken pipe"):
        client.ping()


def test_list_tools_follows_cursors():
    pages = {
        None: {"tools": [{"name": "a"}], "nextCursor": "p2"},
        "p2": {"tools": [{"name": "b"}], "nextCursor": "p3"},
        "p3": {"tools": [{"name": "c"}]},
    }

    def responder(request):
        return _reply(request, dict(pages[request.params.get("cursor")]))

    client, transport = _ready_client(responder)
    result = client.list_tools()
    assert [t["name"] for t in result["tools"]] == ["a", "b", "c"]
    assert "nextCursor" not in result
    assert [r.params for r in transport.requests[1:]] == [{}, {"cursor": "p2"}, {"cursor": "p3"}]


def test_list_by_page_returns_one_page():
    def responder(request):
        return _reply(request, {"resourceTemplates": [{"name": "t"}], "nextCursor": "more"})

    client, transport = _ready_client(responder)
    page = client.list_resource_templates_by_page("start")
    assert page == {"resourceTemplates": [{"name": "t"}], "nextCursor": "more"}
    assert transport.requests[-1].method == "resources/templates/list"
    assert transport.requests[-1].params == {"cursor": "start"}


def test_get_prompt_and_call_tool_params():
    client, transport = _ready_client(lambda request: _reply(request, {}))
    client.get_prompt("greet", {"arg1": "arg1 value"})
    client.call_tool("test-tool", {"parameter-1": "value1"})
    assert transport.requests[-2].params == {"name": "greet", "arguments": {"arg1": "arg1 value"}}
    assert transport.requests[-1].params == {"name": "test-tool", "arguments": {"parameter-1": "value1"}}


def test_notification_handlers_run_in_order():
    client, transport = _ready_client(lambda request: _reply(request, {}))
    seen = []
    client.on_notification(lambda n: seen.append(("first", n.method)))
    client.on_notification(lambda n: seen.append(("second", n.method)))
    transport.handler(JSONRPCNotification(method="notifications/tools/list_changed"))
    assert seen == [
        ("first", "notifications/tools/list_changed"),
        ("second", "notifications/tools/list_changed"),
    ]


def test_context_manager_closes_transport():
    transport = FakeTransport(lambda request: _reply(request, {}))
    with Client(transport, client_capabilities={"roots": {}}) as client:
        assert client.client_capabilities == {"roots": {}}
        assert client.transport is transport
    assert transport.closed is True


def test_get_stderr_for_other_transport_is_none():
    client = Client(FakeTransport(lambda request: _reply(request, {})))
    assert get_stderr(client) is None


def test_get_endpoint_requires_sse_transport():
    client = Client(FakeTransport(lambda request: _reply(request, {})))
    with pytest.raises(TypeError):
        get_endpoint(client)


def test_new_sse_client_has_no_endpoint_before_start():
    client = new_sse_client("http://localhost:1/sse")
    try:
        assert get_endpoint(client) is None
        assert client.transport.base_url == "http://localhost:1/sse"
    finally:
        client.close()


def test_new_sse_client_rejects_invalid_url():
    with pytest.raises(ValueError):
        new_sse_client("://invalid-url")