# Tenant Provisioner - brings a tenant's namespace, identity and grants to Ready.
# Created: 2026-10-18
#
# Best effort: every step runs even if an earlier one failed, and every step
# tolerates "already exists". There is no rollback; call provision() again
# until the outcome is READY.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from kubeoauth.config import Settings
from kubeoauth.errors import (
    ProvisioningStepFailed,
    ResourceAlreadyExists,
    ResourceClientError,
    ResourceNotFound,
)
from kubeoauth.kube.protocol import ResourceClient, ResourceKind
from kubeoauth.models import (
    ProvisioningOutcome,
    ProvisioningState,
    StepResult,
    StepStatus,
    Tenant,
    namespace_for,
    tenant_slug,
)

logger = logging.getLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"

# Metadata the API server owns; never copied onto new objects.
_SERVER_METADATA = (
    "uid",
    "resourceVersion",
    "creationTimestamp",
    "generation",
    "managedFields",
    "ownerReferences",
    "selfLink",
    "namespace",
)
_SERVER_ANNOTATIONS = (
    "deployment.kubernetes.io/revision",
    "kubectl.kubernetes.io/last-applied-configuration",
)


@dataclass(frozen=True)
class _Target:
    tenant_id: str
    namespace: str
    account: str
    grant_name: str


def _copy_for_namespace(obj: dict[str, Any], namespace: str) -> dict[str, Any]:
    """Strip server-owned fields from *obj* so it can be created elsewhere."""
    meta = obj.get("metadata", {})
    new_meta = {k: v for k, v in meta.items() if k not in _SERVER_METADATA}
    annotations = {
        k: v for k, v in (meta.get("annotations") or {}).items() if k not in _SERVER_ANNOTATIONS
    }
    if annotations:
        new_meta["annotations"] = annotations
    else:
        new_meta.pop("annotations", None)
    new_meta["namespace"] = namespace

    body = {k: v for k, v in obj.items() if k not in ("metadata", "status", "apiVersion", "kind")}
    body["metadata"] = new_meta
    return body


class TenantProvisioner:
    """Idempotent per-tenant provisioning as an ordered list of named steps."""

    def __init__(self, client: ResourceClient, settings: Settings):
        self.client = client
        self.settings = settings
        self._tenants: dict[str, Tenant] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def _target(self, tenant_id: str) -> _Target:
        prefix = self.settings.namespace_prefix
        account = tenant_slug(tenant_id, prefix)
        return _Target(
            tenant_id=tenant_id,
            namespace=namespace_for(tenant_id, prefix),
            account=account,
            grant_name=f"{self.settings.grant_prefix}:{account}",
        )

    def _steps(
        self,
    ) -> list[tuple[str, Callable[[_Target], Awaitable[StepStatus]], ProvisioningState]]:
        # (name, step, state reached once this and every earlier step succeeded)
        return [
            ("namespace", self._ensure_namespace, ProvisioningState.NAMESPACE_READY),
            ("service_identity", self._ensure_service_identity, ProvisioningState.IDENTITY_BOUND),
            ("cluster_grant", self._ensure_cluster_grant, ProvisioningState.IDENTITY_BOUND),
            ("namespace_grant", self._ensure_namespace_grant, ProvisioningState.GRANTS_BOUND),
            ("controller", self._ensure_controller, ProvisioningState.CONTROLLER_DEPLOYED),
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def tenant(self, tenant_id: str) -> Tenant:
        """Tenant record with the last recorded provisioning state."""
        if tenant_id not in self._tenants:
            target = self._target(tenant_id)
            self._tenants[tenant_id] = Tenant(tenant_id=tenant_id, namespace=target.namespace)
        return self._tenants[tenant_id]

    def state(self, tenant_id: str) -> ProvisioningState:
        return self.tenant(tenant_id).state

    async def observe(self, tenant_id: str) -> ProvisioningState:
        """Rebuild the tenant's state from the objects present in the cluster.

        Recorded state lives in process memory, so a fresh process knows
        nothing until this (or provision()) runs. Reads only; the recorded
        state is raised, never lowered. ResourceClientError other than a
        missing object propagates.
        """
        t = self._target(tenant_id)
        checks = [
            (ResourceKind.NAMESPACE, t.namespace, None, ProvisioningState.NAMESPACE_READY),
            (
                ResourceKind.SERVICE_ACCOUNT,
                t.account,
                t.namespace,
                ProvisioningState.IDENTITY_BOUND,
            ),
            (
                ResourceKind.CLUSTER_ROLE_BINDING,
                t.grant_name,
                None,
                ProvisioningState.IDENTITY_BOUND,
            ),
            (ResourceKind.ROLE_BINDING, t.grant_name, t.namespace, ProvisioningState.GRANTS_BOUND),
        ]
        if self.settings.controller_enabled:
            checks.append(
                (
                    ResourceKind.DEPLOYMENT,
                    self.settings.controller_deployment,
                    t.namespace,
                    ProvisioningState.CONTROLLER_DEPLOYED,
                )
            )

        reached = ProvisioningState.UNPROVISIONED
        for kind, name, namespace, reaches in checks:
            try:
                await self.client.get(kind, name, namespace=namespace)
            except ResourceNotFound:
                break
            reached = reaches
        else:
            reached = ProvisioningState.READY

        tenant = self.tenant(tenant_id)
        tenant.state = max(tenant.state, reached)
        return tenant.state

    async def provision(self, tenant_id: str) -> ProvisioningOutcome:
        """Run every provisioning step for *tenant_id* and report the result.

        The returned state is the highest one reached by the contiguous run of
        successful steps from the start, and never lower than what an earlier
        call already recorded for the tenant.
        """
        target = self._target(tenant_id)
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())

        async with lock:
            results: list[StepResult] = []
            reached = ProvisioningState.UNPROVISIONED
            contiguous = True

            for name, step, reaches in self._steps():
                try:
                    status = await step(target)
                except Exception as e:
                    results.append(StepResult(name=name, status=StepStatus.FAILED, error=str(e)))
                    logger.warning("Provisioning %s: step %s failed: %s", tenant_id, name, e)
                    contiguous = False
                    continue

                results.append(StepResult(name=name, status=status))
                logger.debug("Provisioning %s: step %s -> %s", tenant_id, name, status.value)
                if contiguous:
                    reached = max(reached, reaches)

            if contiguous:
                reached = ProvisioningState.READY

            tenant = self.tenant(tenant_id)
            tenant.state = max(tenant.state, reached)

        outcome = ProvisioningOutcome(
            tenant_id=tenant_id,
            namespace=target.namespace,
            state=tenant.state,
            steps=results,
        )
        if outcome.failed_steps:
            logger.warning(
                "Provisioned %s to %s with %d failed step(s)",
                tenant_id,
                outcome.state.name,
                len(outcome.failed_steps),
            )
        else:
            logger.info("Provisioned %s (%s)", tenant_id, target.namespace)
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _create(
        self, kind: ResourceKind, body: dict[str, Any], namespace: str | None = None
    ) -> StepStatus:
        try:
            await self.client.create(kind, body, namespace=namespace)
        except ResourceAlreadyExists:
            return StepStatus.ALREADY_EXISTS
        return StepStatus.SUCCESS

    async def _ensure_namespace(self, t: _Target) -> StepStatus:
        body = {
            "metadata": {
                "name": t.namespace,
                "labels": {f"{self.settings.grant_prefix}/managed": "true"},
            }
        }
        return await self._create(ResourceKind.NAMESPACE, body)

    async def _ensure_service_identity(self, t: _Target) -> StepStatus:
        body = {"metadata": {"name": t.account, "namespace": t.namespace}}
        return await self._create(ResourceKind.SERVICE_ACCOUNT, body, namespace=t.namespace)

    def _subjects(self, t: _Target) -> list[dict[str, str]]:
        return [{"kind": "ServiceAccount", "name": t.account, "namespace": t.namespace}]

    async def _ensure_cluster_grant(self, t: _Target) -> StepStatus:
        body = {
            "metadata": {"name": t.grant_name},
            "roleRef": {
                "apiGroup": RBAC_API_GROUP,
                "kind": "ClusterRole",
                "name": self.settings.cluster_role,
            },
            "subjects": self._subjects(t),
        }
        return await self._create(ResourceKind.CLUSTER_ROLE_BINDING, body)

    async def _ensure_namespace_grant(self, t: _Target) -> StepStatus:
        body = {
            "metadata": {"name": t.grant_name, "namespace": t.namespace},
            "roleRef": {
                "apiGroup": RBAC_API_GROUP,
                "kind": "ClusterRole",
                "name": self.settings.namespace_role,
            },
            "subjects": self._subjects(t),
        }
        return await self._create(ResourceKind.ROLE_BINDING, body, namespace=t.namespace)

    async def _ensure_controller(self, t: _Target) -> StepStatus:
        """Copy the shared controller (RBAC + deployment) into the tenant namespace."""
        if not self.settings.controller_enabled:
            return StepStatus.SKIPPED

        source = self.settings.controller_template_namespace
        try:
            deployment = await self.client.get(
                ResourceKind.DEPLOYMENT, self.settings.controller_deployment, namespace=source
            )
            roles = await self.client.list(ResourceKind.ROLE, namespace=source)
            bindings = await self.client.list(ResourceKind.ROLE_BINDING, namespace=source)
        except ResourceClientError as e:
            raise ProvisioningStepFailed("controller", f"cannot read template: {e}") from e

        pod_spec = deployment.get("spec", {}).get("template", {}).get("spec", {})
        account_name = pod_spec.get("serviceAccountName") or pod_spec.get("serviceAccount")

        objects: list[tuple[ResourceKind, dict[str, Any]]] = []
        if account_name:
            account = await self.client.get(
                ResourceKind.SERVICE_ACCOUNT, account_name, namespace=source
            )
            account = _copy_for_namespace(account, t.namespace)
            account.pop("secrets", None)
            objects.append((ResourceKind.SERVICE_ACCOUNT, account))

        for role in roles:
            objects.append((ResourceKind.ROLE, _copy_for_namespace(role, t.namespace)))

        for binding in bindings:
            copied = _copy_for_namespace(binding, t.namespace)
            copied["subjects"] = [
                {**s, "namespace": t.namespace} if s.get("namespace") == source else s
                for s in copied.get("subjects") or []
            ]
            objects.append((ResourceKind.ROLE_BINDING, copied))

        copied_deployment = _copy_for_namespace(deployment, t.namespace)
        copied_deployment.setdefault("spec", {})["replicas"] = self.settings.controller_replicas
        objects.append((ResourceKind.DEPLOYMENT, copied_deployment))

        created = False
        for kind, body in objects:
            status = await self._create(kind, body, namespace=t.namespace)
            created = created or status is StepStatus.SUCCESS
        return StepStatus.SUCCESS if created else StepStatus.ALREADY_EXISTS
