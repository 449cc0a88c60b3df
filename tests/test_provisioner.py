# Tests for provisioner.py
# Created: 2026-10-18

import pytest

from kubeoauth.errors import ResourceClientError
from kubeoauth.kube.memory import InMemoryResourceClient
from kubeoauth.kube.protocol import ResourceKind
from kubeoauth.models import ProvisioningState, StepStatus
from kubeoauth.provisioner import TenantProvisioner


class FlakyClient(InMemoryResourceClient):
    """In-memory cluster that rejects creates of selected kinds."""

    def __init__(self, failing: set[ResourceKind]):
        super().__init__()
        self.failing = failing

    async def create(self, kind, body, namespace=None):
        if kind in self.failing:
            raise ResourceClientError(f"{kind.info.plural} forbidden", status_code=403)
        return await super().create(kind, body, namespace=namespace)


@pytest.fixture
def provisioner(kube, settings):
    return TenantProvisioner(kube, settings)


class TestProvision:
    async def test_fresh_tenant_reaches_ready(self, provisioner, kube):
        outcome = await provisioner.provision("alice")

        assert outcome.ready
        assert outcome.state is ProvisioningState.READY
        assert outcome.namespace == "spotify-alice"
        assert [s.name for s in outcome.steps] == [
            "namespace",
            "service_identity",
            "cluster_grant",
            "namespace_grant",
            "controller",
        ]

        ns = await kube.get(ResourceKind.NAMESPACE, "spotify-alice")
        assert ns["metadata"]["labels"]["dj-kubelet/managed"] == "true"
        await kube.get(ResourceKind.SERVICE_ACCOUNT, "alice", namespace="spotify-alice")
        crb = await kube.get(ResourceKind.CLUSTER_ROLE_BINDING, "dj-kubelet:alice")
        assert crb["roleRef"]["name"] == "dj-kubelet:user-global"
        assert crb["subjects"] == [
            {"kind": "ServiceAccount", "name": "alice", "namespace": "spotify-alice"}
        ]
        rb = await kube.get(
            ResourceKind.ROLE_BINDING, "dj-kubelet:alice", namespace="spotify-alice"
        )
        assert rb["roleRef"] == {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": "dj-kubelet:user",
        }

    async def test_controller_skipped_without_template(self, provisioner):
        outcome = await provisioner.provision("alice")
        assert outcome.steps[-1].status is StepStatus.SKIPPED

    async def test_idempotent(self, provisioner, kube):
        await provisioner.provision("alice")
        before = await kube.list(ResourceKind.ROLE_BINDING)

        outcome = await provisioner.provision("alice")

        assert outcome.state is ProvisioningState.READY
        assert all(
            s.status in (StepStatus.ALREADY_EXISTS, StepStatus.SKIPPED) for s in outcome.steps
        )
        assert len(await kube.list(ResourceKind.ROLE_BINDING)) == len(before)
        assert len(await kube.list(ResourceKind.NAMESPACE)) == 1

    async def test_deterministic_names(self, kube, settings):
        first = await TenantProvisioner(kube, settings).provision("Some.User")
        second = await TenantProvisioner(kube, settings).provision("Some.User")
        assert first.namespace == second.namespace
        assert len(await kube.list(ResourceKind.NAMESPACE)) == 1

    async def test_tenants_are_isolated(self, provisioner, kube):
        await provisioner.provision("alice")
        await provisioner.provision("bob")

        assert [n["metadata"]["name"] for n in await kube.list(ResourceKind.NAMESPACE)] == [
            "spotify-alice",
            "spotify-bob",
        ]
        assert provisioner.state("alice") is ProvisioningState.READY
        assert provisioner.state("bob") is ProvisioningState.READY

    async def test_unknown_tenant_is_unprovisioned(self, provisioner):
        assert provisioner.state("nobody") is ProvisioningState.UNPROVISIONED
        assert provisioner.tenant("nobody").namespace == "spotify-nobody"


class TestObserve:
    async def test_fresh_instance_sees_ready_tenant(self, kube, settings):
        await TenantProvisioner(kube, settings).provision("alice")

        restarted = TenantProvisioner(kube, settings)
        assert restarted.state("alice") is ProvisioningState.UNPROVISIONED
        assert await restarted.observe("alice") is ProvisioningState.READY
        assert restarted.state("alice") is ProvisioningState.READY

    async def test_partial_tenant(self, settings):
        client = FlakyClient({ResourceKind.SERVICE_ACCOUNT})
        await TenantProvisioner(client, settings).provision("alice")

        restarted = TenantProvisioner(client, settings)
        assert await restarted.observe("alice") is ProvisioningState.NAMESPACE_READY

    async def test_unknown_tenant(self, provisioner):
        assert await provisioner.observe("nobody") is ProvisioningState.UNPROVISIONED

    async def test_controller_checked_when_enabled(self, kube, settings):
        await TenantProvisioner(kube, settings).provision("alice")
        settings.controller_template_namespace = "dj-system"

        restarted = TenantProvisioner(kube, settings)
        assert await restarted.observe("alice") is ProvisioningState.GRANTS_BOUND

    async def test_never_lowers_recorded_state(self, provisioner, kube):
        await provisioner.provision("alice")
        del kube._objects[(ResourceKind.CLUSTER_ROLE_BINDING, None, "dj-kubelet:alice")]

        assert await provisioner.observe("alice") is ProvisioningState.READY


class TestBestEffort:
    async def test_failed_step_does_not_stop_later_steps(self, settings):
        client = FlakyClient({ResourceKind.CLUSTER_ROLE_BINDING})
        outcome = await TenantProvisioner(client, settings).provision("alice")

        statuses = {s.name: s.status for s in outcome.steps}
        assert statuses["cluster_grant"] is StepStatus.FAILED
        assert statuses["namespace_grant"] is StepStatus.SUCCESS
        assert outcome.state is ProvisioningState.IDENTITY_BOUND
        assert not outcome.ready
        assert "forbidden" in outcome.failed_steps[0].error
        # Later step really ran
        await client.get(ResourceKind.ROLE_BINDING, "dj-kubelet:alice", namespace="spotify-alice")

    async def test_first_step_failure(self, settings):
        client = FlakyClient({ResourceKind.NAMESPACE})
        outcome = await TenantProvisioner(client, settings).provision("alice")

        assert outcome.state is ProvisioningState.UNPROVISIONED
        # Namespaced steps fail too: their namespace is missing
        assert {s.name for s in outcome.failed_steps} >= {"namespace", "service_identity"}

    async def test_rerun_after_fix_reaches_ready(self, settings):
        client = FlakyClient({ResourceKind.ROLE_BINDING})
        provisioner = TenantProvisioner(client, settings)
        assert (await provisioner.provision("alice")).state is ProvisioningState.IDENTITY_BOUND

        client.failing.clear()
        outcome = await provisioner.provision("alice")
        assert outcome.state is ProvisioningState.READY

    async def test_state_never_goes_backwards(self, settings):
        client = FlakyClient(set())
        provisioner = TenantProvisioner(client, settings)
        await provisioner.provision("alice")

        client.failing.add(ResourceKind.CLUSTER_ROLE_BINDING)
        # Pretend the binding vanished so the create is attempted and fails
        del client._objects[(ResourceKind.CLUSTER_ROLE_BINDING, None, "dj-kubelet:alice")]
        outcome = await provisioner.provision("alice")

        assert outcome.failed_steps
        assert outcome.state is ProvisioningState.READY


class TestController:
    @pytest.fixture
    async def template(self, kube):
        ns = "dj-system"
        await kube.create(ResourceKind.NAMESPACE, {"metadata": {"name": ns}})
        await kube.create(
            ResourceKind.SERVICE_ACCOUNT,
            {"metadata": {"name": "dj-controller"}, "secrets": [{"name": "old-token"}]},
            namespace=ns,
        )
        await kube.create(
            ResourceKind.ROLE,
            {
                "metadata": {"name": "dj-controller"},
                "rules": [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}],
            },
            namespace=ns,
        )
        await kube.create(
            ResourceKind.ROLE_BINDING,
            {
                "metadata": {"name": "dj-controller"},
                "roleRef": {
                    "apiGroup": "rbac.authorization.k8s.io",
                    "kind": "Role",
                    "name": "dj-controller",
                },
                "subjects": [
                    {"kind": "ServiceAccount", "name": "dj-controller", "namespace": ns},
                    {"kind": "User", "name": "ops"},
                ],
            },
            namespace=ns,
        )
        await kube.create(
            ResourceKind.DEPLOYMENT,
            {
                "metadata": {
                    "name": "dj-controller",
                    "annotations": {"deployment.kubernetes.io/revision": "7"},
                },
                "spec": {
                    "replicas": 0,
                    "template": {"spec": {"serviceAccountName": "dj-controller"}},
                },
                "status": {"readyReplicas": 0},
            },
            namespace=ns,
        )
        return ns

    async def test_copies_template(self, kube, settings, template):
        settings.controller_template_namespace = template
        outcome = await TenantProvisioner(kube, settings).provision("alice")

        assert outcome.state is ProvisioningState.READY
        assert outcome.steps[-1].status is StepStatus.SUCCESS

        deploy = await kube.get(ResourceKind.DEPLOYMENT, "dj-controller", namespace="spotify-alice")
        assert deploy["spec"]["replicas"] == 1
        assert "status" not in deploy
        assert "annotations" not in deploy["metadata"]

        account = await kube.get(
            ResourceKind.SERVICE_ACCOUNT, "dj-controller", namespace="spotify-alice"
        )
        assert "secrets" not in account

        await kube.get(ResourceKind.ROLE, "dj-controller", namespace="spotify-alice")
        binding = await kube.get(
            ResourceKind.ROLE_BINDING, "dj-controller", namespace="spotify-alice"
        )
        assert binding["subjects"][0]["namespace"] == "spotify-alice"
        assert binding["subjects"][1] == {"kind": "User", "name": "ops"}

    async def test_second_copy_is_already_exists(self, kube, settings, template):
        settings.controller_template_namespace = template
        provisioner = TenantProvisioner(kube, settings)
        await provisioner.provision("alice")

        outcome = await provisioner.provision("alice")
        assert outcome.steps[-1].status is StepStatus.ALREADY_EXISTS

    async def test_missing_template_fails_step(self, kube, settings):
        settings.controller_template_namespace = "does-not-exist"
        outcome = await TenantProvisioner(kube, settings).provision("alice")

        assert outcome.steps[-1].status is StepStatus.FAILED
        assert "template" in outcome.steps[-1].error
        assert outcome.state is ProvisioningState.GRANTS_BOUND
