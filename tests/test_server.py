"""Tests for the tool registry and the stdio protocol server."""

import io
import json

import httpx
import pytest

from dashscope_mcp.errors import RemoteAPIError, ToolExecutionError, ValidationError
from dashscope_mcp.providers.base import ChatCompletion, ChatProvider, DashScopeClient, Usage
from dashscope_mcp.server.registry import ToolRegistry
from dashscope_mcp.server.schema import AIChatArguments, validate_arguments
from dashscope_mcp.server.stdio import SERVER_NAME, StdioServer
from dashscope_mcp.server.tools import execute_ai_chat


class StubProvider(ChatProvider):
    """Records calls and returns a canned completion."""

    def __init__(self, content="Hello!", error=None):
        self.content = content
        self.error = error
        self.calls = []

    def chat_completion(self, model, messages, temperature=None, max_tokens=None, top_p=None):
        self.calls.append({
            "model": model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if self.error is not None:
            raise self.error
        return ChatCompletion(
            content=self.content,
            usage=Usage(input_tokens=12, output_tokens=3, total_tokens=15),
            model=model,
        )

    def validate_connection(self):
        return True


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def registry(provider):
    return ToolRegistry(provider)


class TestValidateArguments:
    def test_missing_message(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_arguments(AIChatArguments, {})

        assert exc_info.value.field == "message"

    def test_temperature_out_of_range(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_arguments(AIChatArguments, {"message": "hi", "temperature": 1.5})

        assert exc_info.value.field == "temperature"

    def test_non_object_arguments(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_arguments(AIChatArguments, ["hi"])

        assert exc_info.value.field == "arguments"

    def test_defaults(self):
        args = validate_arguments(AIChatArguments, {"message": "hi"})

        assert args.model == "qwen-turbo"
        assert args.temperature == 0.7
        assert args.system_prompt is None


class TestAIChatTool:
    """Tests for the ai_chat tool."""

    def test_reply_embeds_model_and_usage(self, provider):
        text = execute_ai_chat({"message": "Hi", "model": "qwen-plus"}, provider)

        assert "qwen-plus" in text
        assert "Hello!" in text
        assert "input 12" in text
        assert "output 3" in text
        assert "total 15" in text

    def test_forwards_prompt_and_sampling(self, provider):
        execute_ai_chat(
            {"message": "Hi", "system_prompt": "Be terse", "temperature": 0.2}, provider
        )

        call = provider.calls[0]
        assert call["model"] == "qwen-turbo"
        assert call["temperature"] == 0.2
        assert call["max_tokens"] == 2000
        assert call["messages"] == [
            {"role": "system", "content": "Be terse"},
            {"role": "user", "content": "Hi"},
        ]

    def test_upstream_failure(self):
        provider = StubProvider(error=RemoteAPIError(401, "bad key"))

        with pytest.raises(ToolExecutionError, match="401"):
            execute_ai_chat({"message": "Hi"}, provider)


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_list_tools(self, registry):
        tools = registry.list_tools()

        assert len(tools) == 1
        assert tools[0]["name"] == "ai_chat"
        assert tools[0]["inputSchema"]["required"] == ["message"]

    def test_list_resources(self, registry):
        resources = registry.list_resources()

        assert resources == [{
            "uri": "file://",
            "name": "File system",
            "description": "Access the local file system",
            "mimeType": "text/plain",
        }]

    def test_call_tool_success(self, registry):
        result = registry.call_tool("ai_chat", {"message": "Hi"})

        assert "isError" not in result
        assert result["content"][0]["type"] == "text"
        assert "Hello!" in result["content"][0]["text"]

    def test_call_unknown_tool(self, registry):
        result = registry.call_tool("nope", {})

        assert result["isError"] is True
        assert "Unknown tool: nope" in result["content"][0]["text"]

    def test_call_tool_invalid_arguments(self, registry, provider):
        result = registry.call_tool("ai_chat", {"message": 42})

        assert result["isError"] is True
        assert "message" in result["content"][0]["text"]
        assert provider.calls == []

    def test_call_tool_upstream_failure(self):
        registry = ToolRegistry(StubProvider(error=RemoteAPIError(500, "boom")))

        result = registry.call_tool("ai_chat", {"message": "Hi"})

        assert result["isError"] is True
        assert result["content"][0]["text"].startswith("Error:")
        assert "500" in result["content"][0]["text"]

    @pytest.mark.parametrize("body", [
        {"output": "plain string"},
        {"output": {"text": "ok"}, "usage": {"input_tokens": "n/a"}},
    ])
    def test_call_tool_malformed_upstream_body(self, body):
        """Test that a malformed DashScope body still yields an isError result."""

        def handler(request):
            return httpx.Response(200, json=body)

        client = DashScopeClient(
            "sk-test", http_client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        registry = ToolRegistry(client)

        result = registry.call_tool("ai_chat", {"message": "Hi"})

        assert result["isError"] is True
        assert "unexpected response shape" in result["content"][0]["text"]

    def test_call_tool_unexpected_exception(self):
        """Test that any exception from a tool is folded into an isError result."""
        registry = ToolRegistry(StubProvider(error=RuntimeError("kaput")))

        result = registry.call_tool("ai_chat", {"message": "Hi"})

        assert result["isError"] is True
        assert result["content"][0]["text"] == "Error: kaput"

    def test_read_directory(self, registry, tmp_path):
        (tmp_path / "b.txt").write_text("b")
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / "sub").mkdir()
        uri = f"file://{tmp_path}"

        result = registry.read_resource(uri)

        contents = result["contents"][0]
        assert contents["uri"] == uri
        assert contents["mimeType"] == "application/json"
        assert json.loads(contents["text"]) == {"files": ["a.txt", "b.txt", "sub"]}

    def test_read_file(self, registry, tmp_path):
        path = tmp_path / "note.txt"
        path.write_text("héllo\nworld", encoding="utf-8")

        result = registry.read_resource(f"file://{path}")

        contents = result["contents"][0]
        assert contents["mimeType"] == "text/plain"
        assert contents["text"] == "héllo\nworld"

    def test_read_missing_path(self, registry, tmp_path):
        result = registry.read_resource(f"file://{tmp_path / 'missing.txt'}")

        contents = result["contents"][0]
        assert contents["mimeType"] == "text/plain"
        assert contents["text"].startswith("Error:")

    def test_read_path_with_null_byte(self, registry, tmp_path):
        uri = f"file://{tmp_path}/a\x00b"

        result = registry.read_resource(uri)

        contents = result["contents"][0]
        assert contents["uri"] == uri
        assert contents["mimeType"] == "text/plain"
        assert contents["text"].startswith("Error:")

    def test_read_non_utf8_file(self, registry, tmp_path):
        """Test that undecodable bytes are replaced instead of failing the read."""
        path = tmp_path / "latin1.txt"
        path.write_bytes(b"caf\xe9")

        result = registry.read_resource(f"file://{path}")

        assert result["contents"][0]["text"] == "caf\ufffd"

    def test_read_unsupported_scheme(self, registry):
        result = registry.read_resource("http://example.com")

        contents = result["contents"][0]
        assert contents["uri"] == "http://example.com"
        assert "Unsupported resource URI" in contents["text"]

    def test_read_missing_uri(self, registry):
        result = registry.read_resource(None)

        assert result["contents"][0]["text"].startswith("Error:")


def run_server(registry, *messages):
    """Feed newline-delimited frames to a server and return the parsed responses."""
    lines = []
    for message in messages:
        if isinstance(message, (bytes, str)):
            raw = message.encode("utf-8") if isinstance(message, str) else message
        else:
            raw = json.dumps(message).encode("utf-8")
        lines.append(raw + b"\n")
    out = io.BytesIO()
    StdioServer(registry, inp=io.BytesIO(b"".join(lines)), out=out).serve_forever()
    return [json.loads(line) for line in out.getvalue().splitlines()]


class TestStdioServer:
    """Tests for StdioServer."""

    def test_initialize(self, registry):
        [response] = run_server(registry, {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {"clientInfo": {"name": "test", "version": "0"}},
        })

        assert response["id"] == 1
        assert response["result"]["protocolVersion"] == "2024-11-05"
        assert response["result"]["serverInfo"]["name"] == SERVER_NAME
        assert set(response["result"]["capabilities"]) == {"tools", "resources"}

    def test_tools_list(self, registry):
        [response] = run_server(registry, {"jsonrpc": "2.0", "id": "a", "method": "tools/list"})

        assert response["id"] == "a"
        assert response["result"]["tools"][0]["name"] == "ai_chat"

    def test_unknown_tool_keeps_serving(self, registry):
        """Test that a failed tool call does not stop the server."""
        responses = run_server(
            registry,
            {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "nope", "arguments": {}}},
            {"jsonrpc": "2.0", "id": 2, "method": "ping"},
        )

        assert [r["id"] for r in responses] == [1, 2]
        assert responses[0]["result"]["isError"] is True
        assert responses[1]["result"] == {}

    def test_parse_error(self, registry):
        responses = run_server(registry, "{not json", {"jsonrpc": "2.0", "id": 7, "method": "ping"})

        assert responses[0]["id"] is None
        assert responses[0]["error"]["code"] == -32700
        assert responses[1]["id"] == 7

    def test_invalid_request(self, registry):
        [response] = run_server(registry, {"jsonrpc": "2.0", "id": 3})

        assert response["id"] == 3
        assert response["error"]["code"] == -32600

    def test_notification_gets_no_response(self, registry):
        responses = run_server(
            registry,
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
        )

        assert len(responses) == 1
        assert responses[0]["id"] == 1

    def test_unknown_method(self, registry):
        [response] = run_server(registry, {"jsonrpc": "2.0", "id": 5, "method": "prompts/list"})

        assert response["error"]["code"] == -32601

    def test_tools_call_invalid_params(self, registry):
        [response] = run_server(
            registry, {"jsonrpc": "2.0", "id": 6, "method": "tools/call", "params": {"arguments": {}}}
        )

        assert response["error"]["code"] == -32602

    def test_resources_read(self, registry, tmp_path):
        (tmp_path / "x.txt").write_text("data")

        [response] = run_server(registry, {
            "jsonrpc": "2.0",
            "id": 9,
            "method": "resources/read",
            "params": {"uri": f"file://{tmp_path / 'x.txt'}"},
        })

        assert response["result"]["contents"][0]["text"] == "data"

    def test_blank_lines_are_skipped(self, registry):
        responses = run_server(registry, b"", b"   ", {"jsonrpc": "2.0", "id": 1, "method": "ping"})

        assert len(responses) == 1

    def test_handler_crash_is_internal_error(self, registry, monkeypatch):
        def boom():
            raise RuntimeError("kaput")

        monkeypatch.setattr(registry, "list_resources", boom)

        [response] = run_server(registry, {"jsonrpc": "2.0", "id": 4, "method": "resources/list"})

        assert response["error"]["code"] == -32603
        assert "kaput" in response["error"]["message"]
