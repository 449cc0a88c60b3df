# Data model - tenants, credentials, provisioning and sweep results.
# Created: 2026-10-18

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum

DEFAULT_NAMESPACE_PREFIX = "spotify-"

# Kubernetes object names used here must be DNS-1123 labels.
_MAX_LABEL_LENGTH = 63
_INVALID_LABEL_CHARS = re.compile(r"[^a-z0-9-]+")
# Shape of the suffix tenant_slug appends to rewritten identifiers.
_HASH_SUFFIX = re.compile(r"(?:^|-)[0-9a-f]{8}$")


def tenant_slug(tenant_id: str, prefix: str = "") -> str:
    """Return the DNS-1123 form of *tenant_id* that fits after *prefix*.

    Identifiers that are already valid pass through unchanged. Anything that
    had to be rewritten or truncated gets a short hash of the original
    appended, so two different identifiers never map to the same name. Valid
    identifiers that already end in something shaped like that hash are
    hashed too, keeping the pass-through and hashed forms disjoint.
    """
    if not tenant_id:
        raise ValueError("tenant_id must not be empty")

    budget = _MAX_LABEL_LENGTH - len(prefix)
    slug = _INVALID_LABEL_CHARS.sub("-", tenant_id.lower()).strip("-")
    if slug == tenant_id and len(slug) <= budget and not _HASH_SUFFIX.search(slug):
        return slug

    digest = hashlib.sha256(tenant_id.encode()).hexdigest()[:8]
    head = slug[: max(budget - len(digest) - 1, 0)].rstrip("-")
    return f"{head}-{digest}" if head else digest


def namespace_for(tenant_id: str, prefix: str = DEFAULT_NAMESPACE_PREFIX) -> str:
    """Derive the tenant's namespace name. Pure and deterministic."""
    return f"{prefix}{tenant_slug(tenant_id, prefix)}"


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------


class ProvisioningState(IntEnum):
    """How far a tenant's cluster resources have been brought up."""

    UNPROVISIONED = 0
    NAMESPACE_READY = 1
    IDENTITY_BOUND = 2
    GRANTS_BOUND = 3
    CONTROLLER_DEPLOYED = 4
    READY = 5


@dataclass
class Tenant:
    """An external identity owning one namespace and one credential."""

    tenant_id: str
    namespace: str
    state: ProvisioningState = ProvisioningState.UNPROVISIONED


# ---------------------------------------------------------------------------
# Credential
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class Credential:
    """OAuth token pair owned by exactly one tenant."""

    tenant_id: str
    access_token: str
    refresh_token: str
    expiry: datetime
    updated: datetime = field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Provisioning results
# ---------------------------------------------------------------------------


class StepStatus(str, Enum):
    SUCCESS = "success"
    ALREADY_EXISTS = "already_exists"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of a single provisioning step."""

    name: str
    status: StepStatus
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not StepStatus.FAILED


@dataclass
class ProvisioningOutcome:
    """Aggregated result of one provision() call."""

    tenant_id: str
    namespace: str
    state: ProvisioningState
    steps: list[StepResult] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.state is ProvisioningState.READY

    @property
    def failed_steps(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok]


# ---------------------------------------------------------------------------
# Sweep results
# ---------------------------------------------------------------------------


@dataclass
class SweepReport:
    """What happened to each tenant during one refresh sweep."""

    started_at: datetime = field(default_factory=utcnow)
    refreshed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.refreshed) + len(self.unchanged) + len(self.skipped) + len(self.failed)

    def as_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "total": self.total,
            "refreshed": self.refreshed,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": self.failed,
        }
