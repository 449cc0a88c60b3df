# OAuth Manager - provider authorization code flow, token refresh and identity lookup.
# Created: 2026-10-18
#
# Stateless: every call opens a short-lived httpx client bounded by
# settings.http_timeout. State handling and persistence live elsewhere.

from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from kubeoauth.config import Settings
from kubeoauth.errors import ExchangeFailed, IdentityResolutionFailed, RefreshFailed
from kubeoauth.models import utcnow

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


@dataclass
class ProviderToken:
    """Token endpoint response, reduced to what we persist."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int = DEFAULT_EXPIRES_IN
    token_type: str = "Bearer"

    def expiry(self, now: datetime | None = None) -> datetime:
        return (now or utcnow()) + timedelta(seconds=self.expires_in)


def _parse_token_response(data: object) -> ProviderToken:
    if not isinstance(data, dict):
        raise ValueError("token response is not a JSON object")
    access_token = data.get("access_token")
    if not access_token or not isinstance(access_token, str):
        raise ValueError("token response has no access_token")
    try:
        expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid expires_in: {data.get('expires_in')!r}") from e
    return ProviderToken(
        access_token=access_token,
        refresh_token=data.get("refresh_token") or None,
        expires_in=expires_in,
        token_type=data.get("token_type", "Bearer"),
    )


class OAuthManager:
    """Talks to the provider's authorize, token and identity endpoints.

    Supports:
    - Authorization URL generation
    - Code exchange for tokens
    - Token refresh
    - Identity lookup with a bearer token
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def get_auth_url(self, state: str) -> str:
        """Build the provider authorization URL for *state*."""
        params = {
            "client_id": self.settings.client_id,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.settings.scopes),
            "state": state,
            "show_dialog": "true",
        }
        return f"{self.settings.auth_url}?{urllib.parse.urlencode(params)}"

    async def _token_request(self, form: dict[str, str]) -> ProviderToken:
        form = {
            **form,
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
        }
        async with httpx.AsyncClient(timeout=self.settings.http_timeout) as client:
            resp = await client.post(
                self.settings.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json()
        return _parse_token_response(data)

    async def exchange_code(self, code: str) -> ProviderToken:
        """Exchange an authorization code for access + refresh tokens.

        Raises:
            ExchangeFailed: network error, non-2xx answer or unusable body.
        """
        if not code:
            raise ExchangeFailed("Missing authorization code")
        try:
            token = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.settings.redirect_uri,
                }
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Code exchange failed: %s", e)
            raise ExchangeFailed(f"Code exchange failed: {e}") from e

        logger.info("Exchanged authorization code (expires in %ss)", token.expires_in)
        return token

    async def refresh(self, refresh_token: str) -> ProviderToken:
        """Ask the provider for a renewed token.

        The provider may omit refresh_token in the answer; callers keep the
        previous one in that case.

        Raises:
            RefreshFailed: rejection, timeout or malformed response.
        """
        if not refresh_token:
            raise RefreshFailed("No refresh token stored")
        try:
            return await self._token_request(
                {"grant_type": "refresh_token", "refresh_token": refresh_token}
            )
        except (httpx.HTTPError, ValueError) as e:
            raise RefreshFailed(f"Token refresh failed: {e}") from e

    async def fetch_identity(self, access_token: str) -> str:
        """Resolve the stable user id behind *access_token*.

        Raises:
            IdentityResolutionFailed: request error or no ``id`` in the body.
        """
        try:
            async with httpx.AsyncClient(timeout=self.settings.http_timeout) as client:
                resp = await client.get(
                    self.settings.identity_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise IdentityResolutionFailed(f"Identity lookup failed: {e}") from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id or not isinstance(user_id, str):
            raise IdentityResolutionFailed("Identity response has no id")
        return user_id
