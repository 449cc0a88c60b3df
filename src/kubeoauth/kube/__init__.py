"""Cluster resource clients."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .client import KubeResourceClient
from .memory import InMemoryResourceClient
from .protocol import ResourceClient, ResourceKind

if TYPE_CHECKING:
    from kubeoauth.config import Settings

__all__ = [
    "InMemoryResourceClient",
    "KubeResourceClient",
    "ResourceClient",
    "ResourceKind",
    "build_resource_client",
]


def build_resource_client(settings: Settings) -> ResourceClient:
    """Create the resource client selected by ``settings.kube_backend``."""
    if settings.kube_backend == "memory":
        return InMemoryResourceClient()
    return KubeResourceClient.from_settings(settings)
