"""
Email/password authentication against Firebase Authentication.

Uses the Identity Toolkit REST API. Sign-out only discards the local session;
Firebase ID tokens are stateless.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import httpx
import structlog

from src.assistant.config import get_config
from src.assistant.errors import AuthError

logger = structlog.get_logger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"


@dataclass(frozen=True)
class AuthSession:
    """A signed-in user."""
    email: str
    user_id: str
    id_token: str
    refresh_token: str = ""
    expires_in: int = 0


class IdentityClient:
    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config()
        self._http_client = http_client
        self._session: Optional[AuthSession] = None

    @property
    def current_session(self) -> Optional[AuthSession]:
        return self._session

    @property
    def id_token(self) -> Optional[str]:
        return self._session.id_token if self._session else None

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        timeout = httpx.Timeout(self.config.http_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def _accounts_call(self, method: str, email: str, password: str) -> AuthSession:
        if not email or not password:
            raise AuthError("Email and password are required")

        url = f"{IDENTITY_TOOLKIT_URL}/accounts:{method}"
        payload = {"email": email, "password": password, "returnSecureToken": True}

        try:
            async with self._http() as client:
                resp = await client.post(url, params={"key": self.config.firebase_api_key}, json=payload)
        except httpx.HTTPError as e:
            raise AuthError(f"Identity provider unreachable: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            message = error.get("message") if isinstance(error, dict) else None
            raise AuthError(message or f"HTTP {resp.status_code}")

        id_token = data.get("idToken")
        if not id_token:
            raise AuthError("Identity provider response missing idToken")

        try:
            expires_in = int(data.get("expiresIn", 0))
        except (TypeError, ValueError):
            expires_in = 0

        return AuthSession(
            email=data.get("email", email),
            user_id=data.get("localId", ""),
            id_token=id_token,
            refresh_token=data.get("refreshToken", ""),
            expires_in=expires_in,
        )

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """
        Sign in with email and password.

        Raises:
            AuthError: bad credentials or the provider could not be reached
        """
        session = await self._accounts_call("signInWithPassword", email, password)
        self._session = session
        logger.info("Signed in", user_id=session.user_id)
        return session

    async def sign_up(self, email: str, password: str) -> AuthSession:
        """Create an account; the new user is signed in."""
        session = await self._accounts_call("signUp", email, password)
        self._session = session
        logger.info("Signed up", user_id=session.user_id)
        return session

    async def sign_out(self) -> None:
        session = self._session
        self._session = None
        if session:
            logger.info("Signed out", user_id=session.user_id)
