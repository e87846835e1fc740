"""Tests for the HTTP integration and webhook executor (httpx mock transport)."""

import json

import httpx
import pytest

from integrations.http_integration import HttpIntegration, HttpWebhookExecutor, _auth_headers


def make_transport(handler, seen=None):
    def _handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return handler(request)
    return httpx.MockTransport(_handler)


def ok_json(payload, status=200):
    return lambda request: httpx.Response(status, json=payload)


@pytest.mark.unit
class TestAuthHeaders:

    def test_bearer(self):
        assert _auth_headers({"type": "bearer", "token": "t"}) == {"Authorization": "Bearer t"}

    def test_basic(self):
        assert _auth_headers({"type": "basic", "username": "u", "password": "p"}) == {"Authorization": "Basic dTpw"}

    def test_api_key_custom_header(self):
        assert _auth_headers({"type": "api_key", "key": "k", "header": "X-Token"}) == {"X-Token": "k"}

    def test_unknown(self):
        with pytest.raises(ValueError):
            _auth_headers({"type": "oauth9"})


@pytest.mark.unit
class TestHttpIntegration:

    async def test_execute_get(self):
        seen = []
        integration = HttpIntegration(
            "crm",
            {"base_url": "https://crm.example.com/api/", "auth": {"type": "bearer", "token": "abc"}},
            transport=make_transport(ok_json({"items": [1]}), seen),
        )
        await integration.connect()
        result = await integration.execute("get", {"path": "/contacts", "params": {"page": 2}})

        assert result.success
        assert result.output["status_code"] == 200
        assert result.output["data"] == {"items": [1]}
        assert str(seen[0].url) == "https://crm.example.com/api/contacts?page=2"
        assert seen[0].headers["Authorization"] == "Bearer abc"
        await integration.disconnect()
        assert integration.connected is False

    async def test_error_status_is_failure(self):
        integration = HttpIntegration(
            "crm",
            {"base_url": "https://crm.example.com"},
            transport=make_transport(ok_json({"error": "nope"}, status=500)),
        )
        result = await integration.execute("post", {"path": "/x", "json": {"a": 1}})
        assert not result.success
        assert "HTTP 500" in result.error
        await integration.disconnect()

    async def test_unsupported_action(self):
        integration = HttpIntegration("crm", {"base_url": "https://crm.example.com"}, transport=make_transport(ok_json({})))
        result = await integration.execute("teleport", {})
        assert not result.success

    async def test_health_check_on_connect(self):
        integration = HttpIntegration(
            "crm",
            {"base_url": "https://crm.example.com", "health_check_path": "/health"},
            transport=make_transport(ok_json({}, status=503)),
        )
        with pytest.raises(ConnectionError):
            await integration.connect()
        assert integration.connected is False

    async def test_unreachable_provider_closes_client(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        integration = HttpIntegration(
            "crm",
            {"base_url": "https://crm.example.com", "health_check_path": "/health"},
            transport=make_transport(refuse),
        )
        with pytest.raises(httpx.ConnectError):
            await integration.connect()
        assert integration._client is None
        assert integration.connected is False

    async def test_check_health(self):
        integration = HttpIntegration(
            "crm",
            {"base_url": "https://crm.example.com", "health_check_path": "/health"},
            transport=make_transport(ok_json({"ok": True})),
        )
        assert await integration.check_health() is False
        await integration.connect()
        assert await integration.check_health() is True
        assert integration.get_info() == {"id": "crm", "type": "integration", "connected": True}
        await integration.disconnect()

    @pytest.mark.parametrize("base_url", ["", "ftp://files.example.com", "https://"])
    async def test_invalid_base_url(self, base_url):
        integration = HttpIntegration("crm", {"base_url": base_url}, transport=make_transport(ok_json({})))
        with pytest.raises(ValueError):
            await integration.connect()


@pytest.mark.unit
class TestHttpWebhookExecutor:

    async def test_posts_context_by_default(self):
        seen = []
        executor = HttpWebhookExecutor(transport=make_transport(ok_json({"received": True}), seen))
        output = await executor.execute(
            {"url": "https://hooks.example.com/in", "auth": {"type": "api_key", "key": "k"}},
            {"lead": 1},
        )
        assert output["success"] is True
        assert output["status_code"] == 200
        assert output["data"] == {"received": True}
        assert seen[0].method == "POST"
        assert seen[0].headers["X-API-Key"] == "k"
        assert json.loads(seen[0].content) == {"lead": 1}

    async def test_explicit_body_and_method(self):
        seen = []
        executor = HttpWebhookExecutor(transport=make_transport(lambda r: httpx.Response(200, text="ok"), seen))
        output = await executor.execute({"url": "https://hooks.example.com/in", "method": "put", "body": {"x": 1}}, {"lead": 1})
        assert seen[0].method == "PUT"
        assert json.loads(seen[0].content) == {"x": 1}
        assert output["data"] == "ok"

    async def test_get_has_no_body(self):
        seen = []
        executor = HttpWebhookExecutor(transport=make_transport(ok_json({}), seen))
        await executor.execute({"url": "https://hooks.example.com/in", "method": "GET"}, {"lead": 1})
        assert seen[0].content == b""

    async def test_error_status_raises(self):
        executor = HttpWebhookExecutor(transport=make_transport(ok_json({}, status=404)))
        with pytest.raises(RuntimeError, match="HTTP 404"):
            await executor.execute({"url": "https://hooks.example.com/in"}, {})

    async def test_requires_url(self):
        with pytest.raises(ValueError):
            await HttpWebhookExecutor().execute({}, {})

    async def test_rejects_non_http_scheme(self):
        with pytest.raises(ValueError):
            await HttpWebhookExecutor().execute({"url": "file:///etc/passwd"}, {})
