from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from aura_runner.core.config import settings
from aura_runner.core.errors import ApiNetworkError, AuthError
from aura_runner.schemas.envelope import ApiEnvelope
from aura_runner.schemas.simulation import ProgressPayload, SubmitPayload

if TYPE_CHECKING:
    from aura_runner.core.auth import AuthSession


logger = logging.getLogger(__name__)

# Requests against these paths never trigger a token refresh.
AUTH_PATHS = ("/auth/login", "/auth/register", "/auth/refresh", "/auth/social")


class ApiClient:
    """Async client for the platform REST API.

    Every call resolves to an ``ApiEnvelope``. HTTP error statuses come back as
    ``success=False`` envelopes; only transport failures raise
    (``ApiNetworkError``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout if timeout is not None else settings.API_TIMEOUT_SECONDS,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self._auth: AuthSession | None = None

    def bind_auth(self, auth: AuthSession | None) -> None:
        self._auth = auth

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict | None = None,
        retry_on_unauthorized: bool = True,
    ) -> ApiEnvelope:
        headers = {}
        token = self._auth.access_token if self._auth else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.request(method, url, json=json, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("API timeout", extra={"method": method, "url": url})
            raise ApiNetworkError("Request timed out", code="TIMEOUT") from exc
        except httpx.ConnectError as exc:
            logger.warning("API connection failed", extra={"method": method, "url": url})
            raise ApiNetworkError("CONNECTION_FAILED", code="CONNECTION_FAILED") from exc
        except httpx.TransportError as exc:
            logger.warning("API network error", extra={"method": method, "url": url, "error": str(exc)})
            raise ApiNetworkError("NETWORK_ERROR", code="NETWORK_ERROR") from exc

        if (
            response.status_code == 401
            and retry_on_unauthorized
            and self._auth is not None
            and not _is_auth_path(url)
        ):
            try:
                await self._auth.refresh()
            except AuthError as exc:
                logger.warning("Token refresh failed, session cleared", extra={"url": url, "error": exc.message})
                return _to_envelope(response)
            logger.debug("Retrying request after token refresh", extra={"method": method, "url": url})
            return await self.request(method, url, json=json, params=params, retry_on_unauthorized=False)

        _log_status(response, method, url)
        return _to_envelope(response)

    async def get(self, url: str, params: dict | None = None) -> ApiEnvelope:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, data: Any = None) -> ApiEnvelope:
        return await self.request("POST", url, json=data)

    async def put(self, url: str, data: Any = None) -> ApiEnvelope:
        return await self.request("PUT", url, json=data)

    async def patch(self, url: str, data: Any = None) -> ApiEnvelope:
        return await self.request("PATCH", url, json=data)

    async def delete(self, url: str) -> ApiEnvelope:
        return await self.request("DELETE", url)

    # Simulations

    async def start_simulation(self, simulation_id: str) -> ApiEnvelope:
        return await self.post(f"/simulations/{simulation_id}/start")

    async def save_progress(self, session_id: str, payload: ProgressPayload) -> ApiEnvelope:
        return await self.put(
            f"/simulations/sessions/{session_id}/progress",
            payload.model_dump(by_alias=True),
        )

    async def submit_simulation(self, session_id: str, payload: SubmitPayload) -> ApiEnvelope:
        return await self.post(
            f"/simulations/sessions/{session_id}/submit",
            payload.model_dump(by_alias=True),
        )

    # Auth

    async def login(self, email: str, password: str) -> ApiEnvelope:
        return await self.post("/auth/login", {"email": email, "password": password})

    async def refresh_tokens(self, refresh_token: str) -> ApiEnvelope:
        return await self.post("/auth/refresh", {"refreshToken": refresh_token})

    async def verify_token(self) -> ApiEnvelope:
        return await self.request("GET", "/auth/verify", retry_on_unauthorized=False)

    async def logout(self, refresh_token: str | None) -> ApiEnvelope:
        return await self.request(
            "POST", "/auth/logout", json={"refreshToken": refresh_token}, retry_on_unauthorized=False
        )


def _is_auth_path(url: str) -> bool:
    return any(path in url for path in AUTH_PATHS)


def _log_status(response: httpx.Response, method: str, url: str) -> None:
    status = response.status_code
    if status >= 500:
        logger.error("Server error", extra={"status": status, "method": method, "url": url})
    elif status == 403:
        logger.warning("Access forbidden", extra={"method": method, "url": url})
    elif status == 404:
        logger.info("Resource not found", extra={"method": method, "url": url})


def _to_envelope(response: httpx.Response) -> ApiEnvelope:
    envelope = _parse_envelope(response)
    envelope.status_code = response.status_code
    return envelope


def _parse_envelope(response: httpx.Response) -> ApiEnvelope:
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and "success" in body:
        try:
            return ApiEnvelope.model_validate(body)
        except ValidationError:
            return ApiEnvelope.failure("Malformed response envelope", code="INVALID_RESPONSE")

    if response.is_success:
        return ApiEnvelope(success=True, data=body)
    message = body.get("message") if isinstance(body, dict) else None
    return ApiEnvelope.failure(
        message or f"HTTP {response.status_code}",
        code=f"HTTP_{response.status_code}",
    )
