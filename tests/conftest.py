# Shared fixtures: settings, in-memory cluster and a scripted OAuth provider.
# Created: 2026-10-18

from __future__ import annotations

import asyncio

import pytest

from kubeoauth.config import Settings, reset_settings
from kubeoauth.credentials.store import CredentialStore
from kubeoauth.errors import ExchangeFailed, IdentityResolutionFailed, RefreshFailed
from kubeoauth.integrations.oauth import OAuthManager, ProviderToken
from kubeoauth.kube.memory import InMemoryResourceClient
from kubeoauth.manager import CredentialLifecycleManager


class FakeOAuth(OAuthManager):
    """OAuthManager whose network calls are scripted per test."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.exchange_result: ProviderToken | Exception = ProviderToken(
            access_token="access-1", refresh_token="refresh-1", expires_in=3600
        )
        self.identity: str | Exception = "alice"
        # refresh_token -> ProviderToken or exception to raise
        self.refresh_responses: dict[str, object] = {}
        self.refresh_calls: list[str] = []
        self.refresh_delay = 0.0

    async def exchange_code(self, code: str) -> ProviderToken:
        if isinstance(self.exchange_result, Exception):
            raise self.exchange_result
        if not code:
            raise ExchangeFailed("Missing authorization code")
        return self.exchange_result

    async def fetch_identity(self, access_token: str) -> str:
        if isinstance(self.identity, Exception):
            raise self.identity
        if not self.identity:
            raise IdentityResolutionFailed("Identity response has no id")
        return self.identity

    async def refresh(self, refresh_token: str) -> ProviderToken:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        response = self.refresh_responses.get(refresh_token)
        if response is None:
            raise RefreshFailed(f"unknown refresh token {refresh_token!r}")
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def _reset_settings_singleton():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        client_id="test-client",
        client_secret="test-secret",
        base_url="http://testserver",
        session_secret="test-session-secret",
        kube_backend="memory",
        kube_ca_file="/nonexistent/ca.crt",
        kube_token_file="/nonexistent/token",
    )


@pytest.fixture
def kube():
    return InMemoryResourceClient()


@pytest.fixture
def fake_oauth(settings):
    return FakeOAuth(settings)


@pytest.fixture
def store(kube, settings):
    return CredentialStore(kube, settings)


@pytest.fixture
def manager(settings, kube, fake_oauth):
    return CredentialLifecycleManager(settings, kube, oauth=fake_oauth)
