# Credential Store - per-tenant OAuth tokens persisted as cluster secrets.
# Created: 2026-10-18
#
# One secret (settings.secret_name) per tenant namespace. Writes are merge
# patches touching only token fields, never whole-object replacements.

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime
from typing import Any

from kubeoauth.config import Settings
from kubeoauth.errors import (
    CredentialNotFound,
    ResourceAlreadyExists,
    ResourceClientError,
    ResourceNotFound,
    StorePersistFailed,
)
from kubeoauth.kube.protocol import ResourceClient, ResourceKind
from kubeoauth.models import Credential, namespace_for, utcnow

logger = logging.getLogger(__name__)

# Secret data keys
ACCESS_TOKEN = "access_token"
REFRESH_TOKEN = "refresh_token"
EXPIRY = "expiry"
UPDATED = "updated"


def _token_fields(credential: Credential) -> dict[str, str]:
    fields = {
        ACCESS_TOKEN: credential.access_token,
        EXPIRY: credential.expiry.isoformat(),
        UPDATED: credential.updated.isoformat(),
    }
    # An empty refresh token must never replace a stored one.
    if credential.refresh_token:
        fields[REFRESH_TOKEN] = credential.refresh_token
    return fields


def _decode_data(secret: dict[str, Any]) -> dict[str, str]:
    decoded: dict[str, str] = {}
    for key, value in (secret.get("data") or {}).items():
        decoded[key] = base64.b64decode(value).decode()
    return decoded


class CredentialStore:
    """Create-if-absent / patch-if-present storage for tenant credentials.

    The only component allowed to write token fields. Backend failures are
    raised as StorePersistFailed; a missing secret as CredentialNotFound.
    """

    def __init__(self, client: ResourceClient, settings: Settings):
        self.client = client
        self.settings = settings

    def namespace(self, tenant_id: str) -> str:
        return namespace_for(tenant_id, self.settings.namespace_prefix)

    async def put(self, tenant_id: str, credential: Credential) -> None:
        """Persist *credential* for *tenant_id*.

        Existing secret: merge patch of the token fields only, so labels,
        annotations and unrelated keys survive. Missing secret: create it
        with the management label. A create that loses a race with a
        concurrent writer falls back to the patch.
        """
        namespace = self.namespace(tenant_id)
        fields = _token_fields(credential)
        name = self.settings.secret_name

        try:
            try:
                await self._patch(name, namespace, fields)
                logger.info("Patched credential %s/%s", namespace, name)
                return
            except ResourceNotFound:
                pass

            try:
                await self._create(tenant_id, name, namespace, fields)
                logger.info("Created credential %s/%s", namespace, name)
            except ResourceAlreadyExists:
                await self._patch(name, namespace, fields)
                logger.info("Patched credential %s/%s after create conflict", namespace, name)
        except ResourceClientError as e:
            raise StorePersistFailed(
                f"Could not persist credential for tenant {tenant_id!r}: {e}"
            ) from e

    async def _patch(self, name: str, namespace: str, fields: dict[str, str]) -> None:
        await self.client.patch(
            ResourceKind.SECRET, name, {"stringData": fields}, namespace=namespace
        )

    async def _create(
        self, tenant_id: str, name: str, namespace: str, fields: dict[str, str]
    ) -> None:
        fields = {REFRESH_TOKEN: "", **fields}
        body = {
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": {self.settings.label_key: self.settings.label_value},
                "annotations": {
                    f"{self.settings.grant_prefix}/tenant": tenant_id,
                    f"{self.settings.grant_prefix}/namespace": namespace,
                },
            },
            "type": "Opaque",
            "stringData": fields,
        }
        await self.client.create(ResourceKind.SECRET, body, namespace=namespace)

    async def get(self, tenant_id: str) -> Credential:
        """Load the tenant's credential.

        Raises:
            CredentialNotFound: no secret for the tenant.
            StorePersistFailed: backend error or unreadable secret.
        """
        namespace = self.namespace(tenant_id)
        try:
            secret = await self.client.get(
                ResourceKind.SECRET, self.settings.secret_name, namespace=namespace
            )
        except ResourceNotFound:
            raise CredentialNotFound(tenant_id) from None
        except ResourceClientError as e:
            raise StorePersistFailed(f"Could not read credential for {tenant_id!r}: {e}") from e

        try:
            data = _decode_data(secret)
            return Credential(
                tenant_id=tenant_id,
                access_token=data[ACCESS_TOKEN],
                refresh_token=data.get(REFRESH_TOKEN, ""),
                expiry=datetime.fromisoformat(data[EXPIRY]),
                updated=datetime.fromisoformat(data[UPDATED]) if data.get(UPDATED) else utcnow(),
            )
        except (KeyError, ValueError, binascii.Error) as e:
            raise StorePersistFailed(
                f"Credential secret {namespace}/{self.settings.secret_name} is malformed: {e}"
            ) from e

    async def list_tenants(self) -> list[str]:
        """Tenants owning a managed credential secret, across all namespaces."""
        try:
            secrets = await self.client.list(
                ResourceKind.SECRET, label_selector=self.settings.management_selector
            )
        except ResourceClientError as e:
            raise StorePersistFailed(f"Could not list credentials: {e}") from e

        tenant_key = f"{self.settings.grant_prefix}/tenant"
        tenants = []
        for secret in secrets:
            meta = secret.get("metadata", {})
            if meta.get("name") != self.settings.secret_name:
                continue
            tenant_id = (meta.get("annotations") or {}).get(tenant_key)
            if not tenant_id:
                logger.warning(
                    "Managed secret %s/%s has no %s annotation; skipping",
                    meta.get("namespace"),
                    meta.get("name"),
                    tenant_key,
                )
                continue
            tenants.append(tenant_id)
        return tenants
