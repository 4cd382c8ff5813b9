"""
Hanteo Auth Token Manager
=========================

Client-credentials handshake against the Hanteo token endpoint.

States:
  Unauthenticated → (handshake OK) → Valid
  Valid → (now + safety margin ≥ expiry, or token rejected) → Unauthenticated

Handshakes are serialized with an asyncio.Lock: when several coroutines find
the token expired at once, the first performs the handshake and the rest
reuse its result. The client key and the bearer token are never logged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from app.config import settings
from app.core.clock import Clock, system_clock
from app.core.errors import AuthenticationError
from app.services import hanteo_codes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthToken:
    value: str
    token_kind: str
    expires_at: float

    def is_valid(self, now: float, margin_s: float) -> bool:
        return now + margin_s < self.expires_at


class AuthTokenManager:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: Optional[str] = None,
        client_key: Optional[str] = None,
        clock: Clock = system_clock,
        safety_margin_s: Optional[float] = None,
    ):
        self._http = http
        self._base_url = (base_url or settings.hanteo_base_url).rstrip("/")
        self._client_key = client_key if client_key is not None else settings.hanteo_client_key
        self._clock = clock
        self.safety_margin_s = (
            safety_margin_s if safety_margin_s is not None else settings.hanteo_token_safety_margin_s
        )
        self._token: Optional[AuthToken] = None
        self._lock = asyncio.Lock()
        self.handshake_count = 0

    @property
    def token(self) -> Optional[AuthToken]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None and self._token.is_valid(self._clock.now(), self.safety_margin_s)

    async def ensure_valid(self) -> AuthToken:
        """Return a valid token, performing a handshake only when needed."""
        token = self._token
        if token is not None and token.is_valid(self._clock.now(), self.safety_margin_s):
            return token
        async with self._lock:
            # another coroutine may have finished the handshake while we waited
            token = self._token
            if token is not None and token.is_valid(self._clock.now(), self.safety_margin_s):
                return token
            return await self._authenticate()

    async def force_refresh(self) -> AuthToken:
        async with self._lock:
            self._token = None
            return await self._authenticate()

    def invalidate(self, token_value: Optional[str] = None) -> None:
        """Drop the current token. With ``token_value``, only if it is still current."""
        if self._token is None:
            return
        if token_value is not None and self._token.value != token_value:
            return
        logger.info("Hanteo token invalidated")
        self._token = None

    async def _authenticate(self) -> AuthToken:
        if not self._client_key:
            raise AuthenticationError("Hanteo client key is not configured")

        url = f"{self._base_url}{hanteo_codes.TOKEN_ENDPOINT}"
        self.handshake_count += 1
        logger.info("Authenticating with Hanteo API")
        try:
            response = await self._http.post(
                url,
                params={"grant_type": hanteo_codes.TOKEN_GRANT_TYPE},
                headers={
                    "Authorization": f"Basic {self._client_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            logger.error("Hanteo authentication request failed: %s", exc)
            raise AuthenticationError(f"Authentication request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400 or body.get("code") != hanteo_codes.SUCCESS:
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.error(
                "Hanteo authentication rejected",
                extra={"status_code": response.status_code, "response_code": body.get("code")},
            )
            raise AuthenticationError(
                f"Authentication failed: {message}", status_code=response.status_code
            )

        result = body.get("resultData") or {}
        access_token = result.get("access_token")
        if not access_token:
            raise AuthenticationError("Authentication response carried no access token")

        expires_in = float(result.get("expires_in") or 0)
        self._token = AuthToken(
            value=access_token,
            token_kind=result.get("token_type") or "Bearer",
            expires_at=self._clock.now() + expires_in,
        )
        logger.info("Hanteo authentication successful (expires_in=%ds)", int(expires_in))
        return self._token
