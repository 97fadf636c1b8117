"""
Textbook API — Application Wiring Tests
========================================

What we test:
    ✅ /health and / answer without a database
    ✅ Request ids: generated, echoed when well-formed, replaced otherwise
    ✅ Security headers on every response, errors included
    ✅ CORS: trusted origin allowed with credentials, others refused
    ✅ Unknown routes → 404 in the shared error shape
    ✅ Unhandled errors → 500, detail only in development, with CORS,
       request id and security headers intact
    ✅ Chat placeholder
    ✅ Lifespan aborts on an invalid environment; fatal loop errors exit
"""

from unittest.mock import MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from textbook_api import __version__
from textbook_api.exceptions import ConfigurationError
from textbook_api.main import create_app, lifespan, make_loop_exception_handler

from conftest import build_settings


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_is_static_ok(self, app, test_client, mock_database):
        app.state.database = mock_database

        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["version"] == __version__
        assert body["environment"] == "test"
        assert "uptimeSeconds" in body
        mock_database.query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_root_lists_endpoints(self, test_client):
        response = await test_client.get("/")

        assert response.status_code == 200
        assert "personalize" in response.json()["endpoints"]


class TestRequestId:

    @pytest.mark.asyncio
    async def test_generated_when_absent(self, test_client):
        response = await test_client.get("/")

        assert len(response.headers["X-Request-ID"]) == 8

    @pytest.mark.asyncio
    async def test_client_id_echoed(self, test_client):
        response = await test_client.get("/", headers={"X-Request-ID": "frontend-123"})

        assert response.headers["X-Request-ID"] == "frontend-123"

    @pytest.mark.asyncio
    async def test_malformed_client_id_replaced(self, test_client):
        response = await test_client.get("/", headers={"X-Request-ID": "bad id with spaces"})

        assert response.headers["X-Request-ID"] != "bad id with spaces"


class TestSecurityHeaders:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/health", "/no-such-route"])
    async def test_headers_present(self, test_client, path):
        response = await test_client.get(path)

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]
        assert "Content-Security-Policy" in response.headers
        assert "Referrer-Policy" in response.headers


class TestCors:

    @pytest.mark.asyncio
    async def test_trusted_origin_preflight(self, test_client):
        response = await test_client.options(
            "/user/profile",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "PUT",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert response.headers["access-control-allow-credentials"] == "true"
        assert response.headers["access-control-max-age"] == "86400"

    @pytest.mark.asyncio
    async def test_untrusted_origin_gets_no_cors_grant(self, test_client):
        response = await test_client.get("/", headers={"Origin": "https://evil.example.com"})

        assert "access-control-allow-origin" not in response.headers

    @pytest.mark.asyncio
    async def test_rate_limited_response_carries_cors_headers(self):
        app = create_app(build_settings(rate_limit_max_requests=1))
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            await client.get("/")
            response = await client.get("/", headers={"Origin": "http://localhost:3000"})

        assert response.status_code == 429
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


class TestErrorShape:

    @pytest.mark.asyncio
    async def test_unknown_route_returns_404_body(self, test_client):
        response = await test_client.get("/no-such-route")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["message"] == "Route GET /no-such-route not found"
        assert body["requestId"] == response.headers["X-Request-ID"]

    @staticmethod
    async def _call_failing_route(environment: str):
        app = create_app(build_settings(environment=environment))

        @app.get("/boom")
        async def boom():
            raise RuntimeError("connection string leaked")

        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.get("/boom", headers={"Origin": "http://localhost:3000"})

    @pytest.mark.asyncio
    async def test_unhandled_error_is_generic_outside_development(self):
        response = await self._call_failing_route("production")

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "internal_server_error"
        assert "leaked" not in body["message"]

    @pytest.mark.asyncio
    async def test_unhandled_error_passes_through_the_middleware_chain(self):
        response = await self._call_failing_route("production")

        assert response.status_code == 500
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert response.headers["X-Request-ID"] == response.json()["requestId"]
        assert response.headers["X-Frame-Options"] == "DENY"

    @pytest.mark.asyncio
    async def test_unhandled_error_detail_in_development(self):
        response = await self._call_failing_route("development")

        assert response.status_code == 500
        assert response.json()["message"] == "connection string leaked"


class TestChat:

    @pytest.mark.asyncio
    async def test_echoes_message(self, test_client, sign_in_as):
        sign_in_as("user-1")

        response = await test_client.post("/chat", json={"message": "What is ROS 2?", "sessionId": "s-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "What is ROS 2?" in body["response"]
        assert body["sessionId"] == "s-1"
        assert body["sourceChunks"] == []
        assert body["citations"] == []

    @pytest.mark.asyncio
    async def test_missing_message_returns_400(self, test_client, sign_in_as):
        sign_in_as("user-1")

        response = await test_client.post("/chat", json={"selectedText": "a passage"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert "message" in response.json()["message"]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_invalid_environment_aborts_startup(self):
        app = create_app(build_settings(auth_secret="short"))

        with patch("textbook_api.main.setup_logging"), \
             patch("textbook_api.main.install_fatal_error_handlers") as install:
            with pytest.raises(ConfigurationError):
                async with lifespan(app):
                    pass

        install.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_environment_starts_and_disposes_pool(self, app, mock_database):
        app.state.database = mock_database

        with patch("textbook_api.main.setup_logging"), \
             patch("textbook_api.main.install_fatal_error_handlers") as install:
            async with lifespan(app):
                install.assert_called_once_with(1.0)

        mock_database.dispose.assert_awaited_once()

    def test_unretrieved_task_exception_schedules_exit(self):
        handler = make_loop_exception_handler(delay=1.0)

        with patch("textbook_api.main.schedule_exit") as schedule_exit:
            handler(MagicMock(), {"message": "Task exception was never retrieved",
                                  "exception": RuntimeError("boom")})

        schedule_exit.assert_called_once_with(1.0)

    def test_loop_message_without_exception_is_only_logged(self):
        handler = make_loop_exception_handler(delay=1.0)

        with patch("textbook_api.main.schedule_exit") as schedule_exit:
            handler(MagicMock(), {"message": "Unclosed client session"})

        schedule_exit.assert_not_called()
