# OAuth Exchanger - turns a callback (code, state) into a verified tenant + credential.
# Created: 2026-10-18

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import MutableMapping
from typing import Any

from kubeoauth.errors import StateMismatch
from kubeoauth.integrations.oauth import OAuthManager
from kubeoauth.models import Credential, utcnow

logger = logging.getLogger(__name__)

# Session key holding the pending anti-forgery state
STATE_SESSION_KEY = "oauth_state"


class OAuthExchanger:
    """Login flow on top of OAuthManager.

    The anti-forgery state lives in the caller's session mapping (a
    Starlette session in the web layer, a plain dict in tests). It is
    single use: complete_auth() removes it before comparing.

    No retries: a failed login is restarted by the user.
    """

    def __init__(self, oauth: OAuthManager):
        self.oauth = oauth

    def begin_auth(self, session: MutableMapping[str, Any]) -> tuple[str, str]:
        """Start a login. Returns (redirect_url, state)."""
        state = secrets.token_urlsafe(32)
        session[STATE_SESSION_KEY] = state
        return self.oauth.get_auth_url(state), state

    async def complete_auth(
        self,
        session: MutableMapping[str, Any],
        code: str,
        returned_state: str,
    ) -> tuple[str, Credential]:
        """Finish a login.

        Raises:
            StateMismatch: no pending state, or it differs from *returned_state*.
            ExchangeFailed: the code could not be exchanged.
            IdentityResolutionFailed: the new token did not resolve to a user.
        """
        expected = session.pop(STATE_SESSION_KEY, None)
        if not expected or not returned_state:
            logger.warning("OAuth callback without a pending state")
            raise StateMismatch("No pending login for this session")
        if not hmac.compare_digest(str(expected), str(returned_state)):
            logger.warning("OAuth callback state mismatch")
            raise StateMismatch("Invalid state")

        token = await self.oauth.exchange_code(code)
        tenant_id = await self.oauth.fetch_identity(token.access_token)

        now = utcnow()
        credential = Credential(
            tenant_id=tenant_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token or "",
            expiry=token.expiry(now),
            updated=now,
        )
        logger.info("Login completed for tenant %s", tenant_id)
        return tenant_id, credential
