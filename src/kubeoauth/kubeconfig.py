# Kubeconfig rendering for a tenant's service account.
# Created: 2026-10-18

from __future__ import annotations

import base64
import logging
from pathlib import Path

from kubeoauth.config import Settings
from kubeoauth.kube.protocol import ResourceClient
from kubeoauth.models import namespace_for, tenant_slug

logger = logging.getLogger(__name__)

CLUSTER_NAME = "dj-kubelet"

_TEMPLATE = """apiVersion: v1
clusters:
- cluster:
    server: {server}
{ca_line}  name: {cluster}
contexts:
- context:
    cluster: {cluster}
    namespace: {namespace}
    user: {user}
  name: {user}@{cluster}
current-context: {user}@{cluster}
kind: Config
preferences: {{}}
users:
- name: {user}
  user:
    token: {token}
"""


def _ca_line(ca_file: str) -> str:
    path = Path(ca_file)
    if not path.exists():
        return ""
    data = base64.b64encode(path.read_bytes()).decode()
    return f"    certificate-authority-data: {data}\n"


async def render_kubeconfig(
    client: ResourceClient,
    settings: Settings,
    tenant_id: str,
    expiration_seconds: int = 3600,
) -> str:
    """Return a kubeconfig that authenticates as the tenant's service account.

    Raises ResourceClientError if the service account cannot issue a token
    (usually because provisioning has not reached IDENTITY_BOUND yet).
    """
    prefix = settings.namespace_prefix
    namespace = namespace_for(tenant_id, prefix)
    account = tenant_slug(tenant_id, prefix)

    token = await client.request_token(namespace, account, expiration_seconds)
    logger.debug("Issued kubeconfig token for %s/%s", namespace, account)

    return _TEMPLATE.format(
        server=settings.public_api_server,
        ca_line=_ca_line(settings.kube_ca_file),
        cluster=CLUSTER_NAME,
        namespace=namespace,
        user=account,
        token=token,
    )
