# Credential Lifecycle Manager - wires exchanger, provisioner, store and scheduler.
# Created: 2026-10-18
#
# Built once at startup. Components share one Settings and one resource
# client; nothing here is module-level state.

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import Any

from kubeoauth.auth.exchanger import OAuthExchanger
from kubeoauth.config import Settings
from kubeoauth.credentials.store import CredentialStore
from kubeoauth.integrations.oauth import OAuthManager
from kubeoauth.kube import ResourceClient, build_resource_client
from kubeoauth.kubeconfig import render_kubeconfig
from kubeoauth.models import Credential, ProvisioningOutcome
from kubeoauth.provisioner import TenantProvisioner
from kubeoauth.refresh import RefreshScheduler

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    tenant_id: str
    credential: Credential
    provisioning: ProvisioningOutcome


class CredentialLifecycleManager:
    """Entry point for the login path and the background refresh path."""

    def __init__(
        self,
        settings: Settings,
        client: ResourceClient,
        oauth: OAuthManager | None = None,
    ):
        self.settings = settings
        self.client = client
        self.oauth = oauth or OAuthManager(settings)
        self.exchanger = OAuthExchanger(self.oauth)
        self.provisioner = TenantProvisioner(client, settings)
        self.store = CredentialStore(client, settings)
        self.scheduler = RefreshScheduler(
            self.store,
            self.oauth,
            interval=settings.refresh_interval,
            tenant_timeout=settings.tenant_refresh_timeout,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialLifecycleManager:
        return cls(settings, build_resource_client(settings))

    def begin_login(self, session: MutableMapping[str, Any]) -> str:
        """Start a login and return the provider URL to redirect to."""
        url, _ = self.exchanger.begin_auth(session)
        return url

    async def complete_login(
        self, session: MutableMapping[str, Any], code: str, state: str
    ) -> LoginResult:
        """Exchange, provision, then persist. Runs synchronously end to end.

        Login errors and StorePersistFailed propagate. Provisioning step
        failures do not; they are visible in ``result.provisioning``.
        """
        tenant_id, credential = await self.exchanger.complete_auth(session, code, state)
        outcome = await self.provisioner.provision(tenant_id)
        await self.store.put(tenant_id, credential)
        return LoginResult(tenant_id=tenant_id, credential=credential, provisioning=outcome)

    async def kubeconfig(self, tenant_id: str) -> str:
        return await render_kubeconfig(self.client, self.settings, tenant_id)

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.client.close()
