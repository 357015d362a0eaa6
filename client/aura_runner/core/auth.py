from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from typing import TYPE_CHECKING

from pydantic import ValidationError

from aura_runner.core.config import settings
from aura_runner.core.errors import ApiNetworkError, AuthError
from aura_runner.schemas.auth import AuthTokens, User

if TYPE_CHECKING:
    from aura_runner.core.api_client import ApiClient
    from aura_runner.storage.repository import StateRepository


logger = logging.getLogger(__name__)

TOKENS_KEY = "tokens"
MANAGER_ROLES = ("SENIOR_MANAGER", "JUNIOR_MANAGER")
STUDENT_ROLES = ("USER", "STUDENT")


def decode_token_expiry(token: str) -> float | None:
    """Read the ``exp`` claim of a JWT without verifying it."""
    parts = token.split(".") if token else []
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        payload = json.loads(base64.urlsafe_b64decode(segment))
    except (ValueError, TypeError):
        return None
    exp = payload.get("exp") if isinstance(payload, dict) else None
    return float(exp) if isinstance(exp, (int, float)) else None


class AuthSession:
    """Holds the signed-in user and tokens for one API client.

    The session is handed to whoever needs it instead of living in ambient
    storage. Tokens are optionally persisted through a ``StateRepository``.
    """

    def __init__(
        self,
        api: ApiClient,
        store: StateRepository | None = None,
        refresh_threshold_minutes: int | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._threshold = 60 * (
            refresh_threshold_minutes
            if refresh_threshold_minutes is not None
            else settings.TOKEN_REFRESH_THRESHOLD_MINUTES
        )
        self._refresh_lock = asyncio.Lock()
        self.user: User | None = None
        self.tokens: AuthTokens | None = None
        self.expires_at: float | None = None
        api.bind_auth(self)

    @property
    def access_token(self) -> str | None:
        return self.tokens.access_token if self.tokens else None

    @property
    def is_authenticated(self) -> bool:
        return self.tokens is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == "ADMIN"

    @property
    def is_manager(self) -> bool:
        return self.user is not None and self.user.role in MANAGER_ROLES

    @property
    def is_student(self) -> bool:
        return self.user is not None and self.user.role in STUDENT_ROLES

    async def login(self, email: str, password: str) -> User:
        envelope = await self._api.login(email, password)
        if not envelope.success:
            raise AuthError(envelope.error_message, code=envelope.error_code, status_code=envelope.status_code)
        try:
            tokens = AuthTokens.model_validate(envelope.data["tokens"])
            user = User.model_validate(envelope.data["user"])
        except (KeyError, TypeError, ValidationError) as exc:
            raise AuthError("Malformed login response", code="INVALID_RESPONSE") from exc
        await self._set_tokens(tokens)
        self.user = user
        logger.info("Signed in", extra={"user_id": user.id, "role": user.role})
        return user

    async def refresh(self) -> AuthTokens:
        stale = self.tokens
        async with self._refresh_lock:
            # Another caller refreshed while we waited for the lock.
            if self.tokens is not None and self.tokens is not stale:
                return self.tokens
            if self.tokens is None:
                raise AuthError("No refresh token available", code="NO_REFRESH_TOKEN")
            try:
                envelope = await self._api.refresh_tokens(self.tokens.refresh_token)
            except ApiNetworkError as exc:
                await self.clear()
                raise AuthError("Token refresh failed", code=exc.code) from exc
            if not envelope.success:
                await self.clear()
                raise AuthError(envelope.error_message, code=envelope.error_code, status_code=envelope.status_code)
            tokens_data = envelope.data.get("tokens") if isinstance(envelope.data, dict) else None
            try:
                tokens = AuthTokens(
                    access_token=tokens_data["accessToken"],
                    refresh_token=tokens_data.get("refreshToken") or self.tokens.refresh_token,
                )
            except (KeyError, TypeError, AttributeError, ValidationError) as exc:
                await self.clear()
                raise AuthError("Malformed token refresh response", code="INVALID_RESPONSE") from exc
            await self._set_tokens(tokens)
            logger.info("Token refreshed")
            return tokens

    async def verify(self) -> User | None:
        if self.tokens is None:
            return None
        try:
            envelope = await self._api.verify_token()
        except ApiNetworkError:
            logger.warning("Session verification unavailable")
            return None
        if envelope.success:
            user_data = envelope.data.get("user") if isinstance(envelope.data, dict) else None
            if user_data:
                try:
                    self.user = User.model_validate(user_data)
                except ValidationError as exc:
                    raise AuthError("Malformed verify response", code="INVALID_RESPONSE") from exc
            return self.user
        if envelope.status_code == 401:
            logger.info("Session rejected by server, clearing")
            await self.clear()
        return None

    def should_refresh(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - (now if now is not None else time.time()) < self._threshold

    async def ensure_fresh(self) -> bool:
        if self.tokens is None:
            return False
        if not self.should_refresh():
            return True
        try:
            await self.refresh()
        except AuthError:
            return False
        return True

    async def clear(self) -> None:
        self.tokens = None
        self.user = None
        self.expires_at = None
        if self._store is not None:
            await self._store.delete(TOKENS_KEY)

    async def logout(self) -> None:
        if self.tokens is not None:
            try:
                await self._api.logout(self.tokens.refresh_token)
            except ApiNetworkError:
                logger.warning("Logout request failed, clearing local session anyway")
        await self.clear()

    async def restore(self) -> bool:
        """Load persisted tokens, if any. Does not contact the server."""
        if self._store is None:
            return False
        data = await self._store.get(TOKENS_KEY)
        if not data:
            return False
        try:
            tokens = AuthTokens.model_validate(data)
        except ValidationError:
            logger.warning("Discarding unreadable persisted tokens")
            await self._store.delete(TOKENS_KEY)
            return False
        self.tokens = tokens
        self.expires_at = self._expiry_for(tokens.access_token)
        return True

    async def _set_tokens(self, tokens: AuthTokens) -> None:
        self.tokens = tokens
        self.expires_at = self._expiry_for(tokens.access_token)
        if self._store is not None:
            await self._store.put(TOKENS_KEY, tokens.model_dump(by_alias=True))

    @staticmethod
    def _expiry_for(access_token: str) -> float:
        exp = decode_token_expiry(access_token)
        if exp is not None:
            return exp
        return time.time() + settings.DEFAULT_TOKEN_LIFETIME_MINUTES * 60
