"""
Tests for the REST client: envelope parsing, transport failures and the
refresh-then-retry handling of 401 responses.
"""

import asyncio
import json

import httpx
import pytest

from aura_runner.core.api_client import ApiClient
from aura_runner.core.auth import AuthSession
from aura_runner.core.errors import ApiNetworkError
from aura_runner.schemas.simulation import ProgressPayload


def run_with(handler, calls, login=False):
    """Run ``calls(api, auth)`` against a client backed by ``handler``."""

    async def scenario():
        async with ApiClient(base_url="http://api.test/api", transport=httpx.MockTransport(handler)) as api:
            auth = AuthSession(api)
            if login:
                await auth.login("candidate@example.com", "secret")
            return await calls(api, auth)

    return asyncio.run(scenario())


def login_response(access="access-1", refresh="refresh-1"):
    return httpx.Response(
        200,
        json={
            "success": True,
            "data": {
                "user": {"id": "user-1", "email": "candidate@example.com", "role": "STUDENT"},
                "tokens": {"accessToken": access, "refreshToken": refresh},
            },
        },
    )


class TestEnvelopes:
    def test_success_envelope(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "data": {"id": "sess-1"}, "message": "ok"})

        envelope = run_with(handler, lambda api, auth: api.get("/simulations/sessions/sess-1"))
        assert envelope.success is True
        assert envelope.data == {"id": "sess-1"}
        assert envelope.status_code == 200

    def test_error_envelope_keeps_status(self):
        def handler(request):
            return httpx.Response(
                404,
                json={"success": False, "error": {"message": "Simulation not found", "code": "NOT_FOUND"}},
            )

        envelope = run_with(handler, lambda api, auth: api.start_simulation("missing"))
        assert envelope.success is False
        assert envelope.status_code == 404
        assert envelope.error_message == "Simulation not found"
        assert envelope.error_code == "NOT_FOUND"

    def test_non_json_error(self):
        def handler(request):
            return httpx.Response(502, text="<html>Bad gateway</html>")

        envelope = run_with(handler, lambda api, auth: api.get("/health"))
        assert envelope.success is False
        assert envelope.error_code == "HTTP_502"
        assert envelope.status_code == 502

    def test_plain_json_success_is_wrapped(self):
        def handler(request):
            return httpx.Response(200, json=[1, 2, 3])

        envelope = run_with(handler, lambda api, auth: api.get("/simulations"))
        assert envelope.success is True
        assert envelope.data == [1, 2, 3]

    def test_malformed_envelope(self):
        def handler(request):
            return httpx.Response(200, json={"success": "maybe", "error": "boom"})

        envelope = run_with(handler, lambda api, auth: api.get("/simulations"))
        assert envelope.success is False
        assert envelope.error_code == "INVALID_RESPONSE"


class TestTransportErrors:
    def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ApiNetworkError) as exc_info:
            run_with(handler, lambda api, auth: api.get("/simulations"))
        assert exc_info.value.code == "CONNECTION_FAILED"

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(ApiNetworkError) as exc_info:
            run_with(handler, lambda api, auth: api.get("/simulations"))
        assert exc_info.value.code == "TIMEOUT"


class TestPayloads:
    def test_progress_is_sent_in_camel_case(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "data": None})

        payload = ProgressPayload(answers={"co-1": "A"}, current_section=0, current_question=1, time_remaining=1500)
        run_with(handler, lambda api, auth: api.save_progress("sess-1", payload))
        assert seen["method"] == "PUT"
        assert seen["path"] == "/api/simulations/sessions/sess-1/progress"
        assert seen["body"] == {
            "answers": {"co-1": "A"},
            "currentSection": 0,
            "currentQuestion": 1,
            "timeRemaining": 1500,
        }


class TestUnauthorizedRetry:
    def test_refreshes_once_and_retries(self):
        calls = []

        def handler(request):
            path = request.url.path
            calls.append((path, request.headers.get("Authorization")))
            if path.endswith("/auth/login"):
                return login_response()
            if path.endswith("/auth/refresh"):
                assert json.loads(request.content) == {"refreshToken": "refresh-1"}
                return httpx.Response(
                    200,
                    json={"success": True, "data": {"tokens": {"accessToken": "access-2", "refreshToken": "refresh-2"}}},
                )
            if request.headers.get("Authorization") == "Bearer access-2":
                return httpx.Response(200, json={"success": True, "data": {"id": "sess-1"}})
            return httpx.Response(401, json={"success": False, "error": {"message": "Token expired"}})

        async def calls_(api, auth):
            envelope = await api.start_simulation("sim-1")
            return envelope, auth.access_token

        envelope, token = run_with(handler, calls_, login=True)
        assert envelope.success is True
        assert token == "access-2"
        assert [path for path, _ in calls] == [
            "/api/auth/login",
            "/api/simulations/sim-1/start",
            "/api/auth/refresh",
            "/api/simulations/sim-1/start",
        ]
        assert calls[1][1] == "Bearer access-1"

    def test_failed_refresh_clears_session(self):
        def handler(request):
            path = request.url.path
            if path.endswith("/auth/login"):
                return login_response()
            return httpx.Response(401, json={"success": False, "error": {"message": "Invalid token"}})

        async def calls_(api, auth):
            envelope = await api.start_simulation("sim-1")
            return envelope, auth.is_authenticated

        envelope, authenticated = run_with(handler, calls_, login=True)
        assert envelope.success is False
        assert envelope.status_code == 401
        assert authenticated is False

    def test_auth_paths_never_refresh(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(401, json={"success": False, "error": {"message": "Invalid credentials"}})

        envelope = run_with(handler, lambda api, auth: api.login("candidate@example.com", "wrong"))
        assert envelope.status_code == 401
        assert paths == ["/api/auth/login"]

    def test_retry_happens_only_once(self):
        paths = []

        def handler(request):
            path = request.url.path
            paths.append(path)
            if path.endswith("/auth/login"):
                return login_response()
            if path.endswith("/auth/refresh"):
                return httpx.Response(200, json={"success": True, "data": {"tokens": {"accessToken": "access-2"}}})
            return httpx.Response(401, json={"success": False, "error": {"message": "Still unauthorized"}})

        async def calls_(api, auth):
            envelope = await api.get("/simulations")
            return envelope, auth.tokens.refresh_token

        envelope, refresh_token = run_with(handler, calls_, login=True)
        assert envelope.status_code == 401
        assert paths.count("/api/auth/refresh") == 1
        assert paths.count("/api/simulations") == 2
        assert refresh_token == "refresh-1"

    def test_refresh_reply_without_access_token_clears_session(self):
        def handler(request):
            path = request.url.path
            if path.endswith("/auth/login"):
                return login_response()
            if path.endswith("/auth/refresh"):
                return httpx.Response(200, json={"success": True, "data": {"tokens": {"refreshToken": "refresh-2"}}})
            return httpx.Response(401, json={"success": False, "error": {"message": "Token expired"}})

        async def calls_(api, auth):
            envelope = await api.start_simulation("sim-1")
            return envelope, auth.is_authenticated

        envelope, authenticated = run_with(handler, calls_, login=True)
        assert envelope.status_code == 401
        assert authenticated is False
