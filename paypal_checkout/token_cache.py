import asyncio
import time
from typing import Callable, Optional

import httpx
import structlog

from paypal_checkout.config import Settings
from paypal_checkout.errors import (
    AuthError,
    AuthErrorKind,
    ProcessorUnavailableError,
    TransportErrorKind,
)
from paypal_checkout.models import AccessToken
from paypal_checkout.paypal_client import TOKEN_PATH, json_body, send

logger = structlog.get_logger(__name__)


class TokenCache:
    """
    Process-wide cache of the PayPal OAuth2 access token.

    Reads of a usable token take no lock. Refreshes are serialized and
    re-check the cache once the lock is held, so concurrent callers share a
    single credential exchange and a stale response never replaces a fresher
    token.
    """

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.http = http
        self.clock = clock
        self._token: Optional[AccessToken] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def safety_margin(self) -> float:
        return self.settings.token_safety_margin_seconds

    def _usable(self, token: Optional[AccessToken]) -> bool:
        return token is not None and token.usable(self.clock(), self.safety_margin)

    async def get_token(self) -> AccessToken:
        token = self._token
        if self._usable(token):
            return token

        async with self._refresh_lock:
            token = self._token
            if self._usable(token):
                return token
            token = await self._exchange()
            self._token = token
            return token

    def invalidate(self, token: Optional[AccessToken] = None) -> None:
        """Drop the cached token, or only ``token`` if it is still the cached one."""
        if token is None or self._token is token:
            self._token = None

    async def _exchange(self) -> AccessToken:
        if not self.settings.has_credentials:
            logger.error(
                "paypal_credentials_missing",
                client_id="SET" if self.settings.client_id else "MISSING",
                client_secret="SET" if self.settings.client_secret else "MISSING",
            )
            raise AuthError(
                AuthErrorKind.MISSING_CREDENTIALS, "PayPal credentials not configured"
            )

        issued_at = self.clock()
        try:
            response = await send(
                self.http,
                "POST",
                TOKEN_PATH,
                auth=(self.settings.client_id, self.settings.client_secret),
                data={"grant_type": "client_credentials"},
            )
        except ProcessorUnavailableError as exc:
            kind = (
                AuthErrorKind.TIMEOUT
                if exc.kind is TransportErrorKind.TIMEOUT
                else AuthErrorKind.NETWORK
            )
            raise AuthError(kind, f"Token request failed: {exc.message}") from exc

        payload = json_body(response)
        if not response.is_success:
            logger.error("paypal_token_rejected_by_provider", http_status=response.status_code)
            raise AuthError(
                AuthErrorKind.PROVIDER_REJECTED,
                f"Failed to get access token: {response.status_code}",
                http_status=response.status_code,
            )

        try:
            access_token = payload["access_token"]
            expires_in = float(payload["expires_in"])
        except (KeyError, TypeError, ValueError):
            raise AuthError(
                AuthErrorKind.PROVIDER_REJECTED,
                "Token response is missing access_token or expires_in",
                http_status=response.status_code,
            ) from None

        logger.info("paypal_token_refreshed", expires_in=expires_in)
        return AccessToken(token=access_token, expires_at=issued_at + expires_in)
