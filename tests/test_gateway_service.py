"""
API tests for the chat gateway service.

Tests cover:
- /chat wire format, headers, failover and error responses
- Mid-stream failure surfacing as an aborted stream
- Client disconnect releasing the provider stream
- /upload, / and /healthz
"""

import asyncio
import json
from unittest.mock import patch

import httpx
import pytest

import gateway_service
from errors import ProviderSetupError
from gateway_service import app
from router import FailoverOrchestrator, RotationSelector

CHAT_BODY = {"messages": [{"role": "user", "content": "hi"}]}


@pytest.fixture
async def client():
    """Create an in-process ASGI client.

    httpx.ASGITransport instead of TestClient keeps tests deterministic;
    app exceptions are not re-raised so aborted streams can be inspected.
    """
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def use_providers():
    """Swap the service's gateway for one built over the given providers."""
    patchers = []

    def _use(*providers, max_attempts=None):
        gw = FailoverOrchestrator(RotationSelector(list(providers)), max_attempts=max_attempts)
        p = patch.object(gateway_service, "gateway", gw)
        p.start()
        patchers.append(p)
        return gw

    yield _use
    for p in patchers:
        p.stop()


# ============================================================================
# /chat Tests
# ============================================================================

class TestChatEndpoint:
    """Test the streaming chat endpoint."""

    @pytest.mark.asyncio
    async def test_streams_frames_and_done(self, client, use_providers, make_provider):
        use_providers(make_provider("Groq", ["Hi", "", " there"]))

        response = await client.post("/chat", json=CHAT_BODY)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["connection"] == "keep-alive"
        assert response.headers["x-chat-provider"] == "Groq"
        assert response.content == (
            b'data: {"content":"Hi"}\n\n'
            b'data: {"content":" there"}\n\n'
            b"data: [DONE]\n\n"
        )

    @pytest.mark.asyncio
    async def test_messages_forwarded_in_order(self, client, use_providers, make_provider):
        p = make_provider("Groq", ["ok"])
        use_providers(p)
        body = {
            "messages": [
                {"role": "system", "content": "s"},
                {"role": "user", "content": "q1"},
                {"role": "assistant", "content": "a1"},
                {"role": "user", "content": "q2"},
            ]
        }

        await client.post("/chat", json=body)

        assert [(m.role, m.content) for m in p.received] == [
            ("system", "s"),
            ("user", "q1"),
            ("assistant", "a1"),
            ("user", "q2"),
        ]

    @pytest.mark.asyncio
    async def test_failover_hides_first_error(self, client, use_providers, make_provider):
        bad = make_provider("Groq", setup_error=ProviderSetupError("Groq", "Groq API error: 503"))
        good = make_provider("Cerebras", ["fine"])
        use_providers(bad, good)

        response = await client.post("/chat", json=CHAT_BODY)

        assert response.status_code == 200
        assert response.headers["x-chat-provider"] == "Cerebras"
        assert b"503" not in response.content
        assert response.content.endswith(b"data: [DONE]\n\n")

    @pytest.mark.asyncio
    async def test_rotation_across_requests(self, client, use_providers, make_provider):
        use_providers(make_provider("A", ["a"]), make_provider("B", ["b"]))

        served = []
        for _ in range(3):
            response = await client.post("/chat", json=CHAT_BODY)
            served.append(response.headers["x-chat-provider"])

        assert served == ["A", "B", "A"]

    @pytest.mark.asyncio
    async def test_all_providers_unavailable(self, client, use_providers, make_provider):
        providers = [
            make_provider(n, setup_error=ProviderSetupError(n, "down")) for n in ("A", "B")
        ]
        use_providers(*providers)

        response = await client.post("/chat", json=CHAT_BODY)

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {
            "error": "Error processing request",
            "details": "All AI services are currently unavailable. Please try again later.",
        }
        assert [p.calls for p in providers] == [1, 1]

    @pytest.mark.asyncio
    async def test_mid_stream_failure_aborts_without_done(
        self, client, use_providers, make_provider
    ):
        use_providers(make_provider("Groq", ["partial"], stream_error=RuntimeError("boom")))

        response = await client.post("/chat", json=CHAT_BODY)

        assert response.status_code == 200
        assert response.content == b'data: {"content":"partial"}\n\n'
        assert b"[DONE]" not in response.content

    @pytest.mark.asyncio
    async def test_invalid_json(self, client, use_providers, make_provider):
        p = make_provider("Groq", ["never"])
        use_providers(p)

        response = await client.post(
            "/chat",
            content="invalid json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Error processing request"
        assert "Invalid JSON body" in response.json()["details"]
        assert p.calls == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"messages": "hello"},
            {"messages": []},
            {"messages": [{"role": "robot", "content": "x"}]},
        ],
    )
    async def test_malformed_messages(self, client, use_providers, make_provider, body):
        p = make_provider("Groq", ["never"])
        use_providers(p)

        response = await client.post("/chat", json=body)

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Error processing request"
        assert "messages" in data["details"]
        assert p.calls == 0

    @pytest.mark.asyncio
    async def test_request_too_large(self, client):
        body = b'{"messages": [{"role": "user", "content": "' + b"x" * 3_000_000 + b'"}]}'

        response = await client.post(
            "/chat",
            content=body,
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json()["error"] == "Request too large"

    @pytest.mark.asyncio
    async def test_request_id_header_used_in_logs(
        self, client, use_providers, make_provider, gateway_caplog
    ):
        use_providers(make_provider("Groq", ["x"]))

        await client.post("/chat", json=CHAT_BODY, headers={"X-Request-ID": "req-42"})

        assert any("req_id=req-42" in r.getMessage() for r in gateway_caplog.records)


# ============================================================================
# Client Disconnect Tests
# ============================================================================

async def _chat_until_disconnect(after_first_frame):
    """Drive /chat at the ASGI level with a client that goes away.

    Returns the body bytes the client received before disconnecting.
    """
    body = json.dumps(CHAT_BODY).encode()
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/chat",
        "raw_path": b"/chat",
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }
    first_frame_sent = asyncio.Event()
    request_sent = False
    received = []

    async def receive():
        nonlocal request_sent
        if not request_sent:
            request_sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        if after_first_frame:
            await first_frame_sent.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        if message["type"] == "http.response.body" and message.get("body"):
            received.append(message["body"])
            first_frame_sent.set()
        # A real transport yields to the event loop on every write.
        await asyncio.sleep(0)

    await app(scope, receive, send)
    return b"".join(received)


class TestClientDisconnect:
    """Test that a departing client releases the provider stream."""

    @pytest.mark.asyncio
    async def test_disconnect_before_first_frame(self, use_providers, make_provider):
        p = make_provider("Groq", ["first", "second", "third"])
        use_providers(p)

        body = await _chat_until_disconnect(after_first_frame=False)

        assert b"[DONE]" not in body
        assert p.calls == 1
        assert p.pulled == 0
        assert p.closed is True

    @pytest.mark.asyncio
    async def test_disconnect_after_first_frame(self, use_providers, make_provider):
        p = make_provider("Groq", ["first", "second", "third"])
        use_providers(p)

        body = await _chat_until_disconnect(after_first_frame=True)

        assert body == b'data: {"content":"first"}\n\n'
        assert p.pulled == 1
        assert p.closed is True

        # Nothing is pulled after the release.
        await asyncio.sleep(0.05)
        assert p.pulled == 1


# ============================================================================
# /upload Tests
# ============================================================================

class TestUploadEndpoint:
    """Test file upload extraction endpoint."""

    @pytest.mark.asyncio
    async def test_text_upload(self, client):
        response = await client.post(
            "/upload", files={"file": ("notes.txt", b"hello world", "text/plain")}
        )

        assert response.status_code == 200
        data = response.json()
        assert data == {
            "success": True,
            "content": "hello world",
            "fileName": "notes.txt",
            "fileType": "text/plain",
            "size": 11,
        }

    @pytest.mark.asyncio
    async def test_image_upload(self, client):
        response = await client.post(
            "/upload", files={"file": ("pic.png", b"\x89PNG", "image/png")}
        )

        data = response.json()
        assert data["isImage"] is True
        assert data["base64"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_missing_file(self, client):
        response = await client.post("/upload", files={"other": ("x.txt", b"x", "text/plain")})

        assert response.status_code == 400
        assert response.json() == {"error": "No file provided"}

    @pytest.mark.asyncio
    async def test_file_too_large(self, client):
        from dataclasses import replace

        small = replace(gateway_service.config, max_file_size=4)
        with patch.object(gateway_service, "config", small):
            response = await client.post(
                "/upload", files={"file": ("big.txt", b"too many bytes", "text/plain")}
            )

        assert response.status_code == 400
        assert response.json()["error"] == "File too large"


# ============================================================================
# Misc Endpoint Tests
# ============================================================================

class TestMiscEndpoints:
    """Test health and UI endpoints."""

    @pytest.mark.asyncio
    async def test_healthz(self, client, use_providers, make_provider):
        use_providers(make_provider("Groq"), make_provider("Cerebras"))

        response = await client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "providers": ["Groq", "Cerebras"]}

    @pytest.mark.asyncio
    async def test_index_serves_chat_ui(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "/chat" in response.text

    def test_gateway_built_from_environment(self):
        names = [p.name for p in gateway_service.build_gateway(gateway_service.config).providers]
        assert names[:2] == ["Groq", "Cerebras"]
