"""
End-to-end tests for the HTTP application.
"""

import json

import anyio
import httpx
import pytest
from starlette.testclient import TestClient

from context_echo.config import ServerConfig
from context_echo.mcp_http import create_app

MCP_HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}


def tool_call(request_id: int, name: str, arguments: dict) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }


@pytest.fixture
def client(tmp_path):
    config = ServerConfig(memory_dir=tmp_path / "memory", json_response=True)
    with TestClient(create_app(config)) as client:
        yield client


class TestAncillaryEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["transport"] == "streamable-http"

    def test_well_known_discovery_document(self, client):
        response = client.get("/.well-known/mcp.json")
        assert response.status_code == 200
        assert response.json()["name"] == "context-echo"


class TestMcpEndpoint:

    def call(self, client, request_id, name, arguments, **kwargs):
        response = client.post("/mcp", headers=MCP_HEADERS, json=tool_call(request_id, name, arguments), **kwargs)
        assert response.status_code == 200
        return response.json()["result"]

    def test_add_then_query_without_session_id(self, client):
        tea = {"content": "Alice likes tea", "confidence": 0.8, "timestamp": "2024-01-01T00:00:00Z"}
        result = self.call(client, 1, "memory.add", {"userId": "u1", "entity": {"name": "Alice", "type": "Person"}, "fact": tea})
        assert result["isError"] is False
        assert result["content"][0]["text"] == "Successfully added 2 items to memory for user u1."

        result = self.call(client, 2, "memory.query", {"userId": "u1", "query": "alice"})
        matched = json.loads(result["content"][0]["text"])
        assert [e["name"] for e in matched["entities"]] == ["Alice"]
        assert [f["content"] for f in matched["facts"]] == ["Alice likes tea"]

        registry = client.app.state.registry
        assert registry.get("stateless") is not None
        assert registry.handshakes == 1

    def test_query_parameter_selects_session(self, client):
        result = self.call(client, 1, "memory.summarize", {"userId": "u1"}, params={"sessionId": "abc"})
        assert "- Entities: 0" in result["content"][0]["text"]

        registry = client.app.state.registry
        assert registry.get("abc") is not None
        assert registry.get("stateless") is None

    def test_same_session_reused_across_requests(self, client):
        headers = {**MCP_HEADERS, "mcp-session-id": "s1"}
        for request_id in (1, 2, 3):
            response = client.post("/mcp", headers=headers, json=tool_call(request_id, "memory.summarize", {"userId": "u1"}))
            assert response.status_code == 200

        assert client.app.state.registry.handshakes == 1

    def test_validation_failure_is_error_result(self, client):
        bad = {"content": "x", "confidence": 1.5, "timestamp": "2024-01-01T00:00:00Z"}
        result = self.call(client, 1, "memory.add", {"userId": "u1", "fact": bad})
        assert result["isError"] is True
        assert result["content"][0]["text"].startswith("ValidationError")

    def test_tools_list(self, client):
        response = client.post("/mcp", headers=MCP_HEADERS, json={"jsonrpc": "2.0", "id": 1, "method": "tools/list"})
        names = {t["name"] for t in response.json()["result"]["tools"]}
        assert names == {"memory.add", "memory.query", "memory.summarize"}


@pytest.mark.anyio
async def test_concurrent_header_less_calls_sharing_an_id(tmp_path):
    """Callers without a session id all start at id 1 and must each get their own reply."""
    app = create_app(ServerConfig(memory_dir=tmp_path / "memory", json_response=True))
    replies = {}

    async def summarize(client, n):
        response = await client.post("/mcp", headers=MCP_HEADERS, json=tool_call(1, "memory.summarize", {"userId": f"user{n}"}))
        replies[n] = response.json()

    async with app.state.registry.run():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            with anyio.fail_after(10):
                async with anyio.create_task_group() as tg:
                    for n in range(10):
                        tg.start_soon(summarize, client, n)

    assert len(replies) == 10
    for n, reply in replies.items():
        assert reply["id"] == 1
        assert reply["result"]["content"][0]["text"].startswith(f"Knowledge Graph Summary for User: user{n}\n")
