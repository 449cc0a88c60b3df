# Resource client protocol - the narrow cluster API the core depends on.
# Created: 2026-10-18

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol


@dataclass(frozen=True)
class KindInfo:
    api_path: str  # "/api/v1" or "/apis/<group>/<version>"
    plural: str
    kind: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        if self.api_path == "/api/v1":
            return "v1"
        return self.api_path.removeprefix("/apis/")


class ResourceKind(Enum):
    """Object kinds touched by provisioning and the credential store."""

    NAMESPACE = KindInfo("/api/v1", "namespaces", "Namespace", namespaced=False)
    SERVICE_ACCOUNT = KindInfo("/api/v1", "serviceaccounts", "ServiceAccount")
    SECRET = KindInfo("/api/v1", "secrets", "Secret")
    ROLE = KindInfo("/apis/rbac.authorization.k8s.io/v1", "roles", "Role")
    ROLE_BINDING = KindInfo("/apis/rbac.authorization.k8s.io/v1", "rolebindings", "RoleBinding")
    CLUSTER_ROLE_BINDING = KindInfo(
        "/apis/rbac.authorization.k8s.io/v1",
        "clusterrolebindings",
        "ClusterRoleBinding",
        namespaced=False,
    )
    DEPLOYMENT = KindInfo("/apis/apps/v1", "deployments", "Deployment")

    @property
    def info(self) -> KindInfo:
        return self.value


class ResourceClient(Protocol):
    """Generic create/get/list/patch over a namespaced object store.

    Implementations raise ResourceAlreadyExists on create conflicts,
    ResourceNotFound for missing objects or namespaces, and
    ResourceClientError for everything else.
    """

    async def create(
        self, kind: ResourceKind, body: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        """Create an object and return it as stored."""
        ...

    async def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> dict[str, Any]:
        """Fetch one object."""
        ...

    async def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List objects; namespace=None lists across all namespaces."""
        ...

    async def patch(
        self,
        kind: ResourceKind,
        name: str,
        patch: dict[str, Any],
        namespace: str | None = None,
    ) -> dict[str, Any]:
        """Apply a JSON merge patch (RFC 7386) and return the result."""
        ...

    async def request_token(
        self, namespace: str, service_account: str, expiration_seconds: int = 3600
    ) -> str:
        """Issue a bearer token for a service account."""
        ...

    async def close(self) -> None:
        ...
