# In-memory resource client - process-local cluster store for local runs and tests.
# Created: 2026-10-18
#
# Mirrors the API server behaviour the core relies on: 409 on duplicate
# create, 404 on missing object or namespace, RFC 7386 merge patches,
# and Secret stringData folded into base64 data on write.

from __future__ import annotations

import asyncio
import base64
import copy
import logging
import secrets
from typing import Any

from kubeoauth.errors import ResourceAlreadyExists, ResourceNotFound
from kubeoauth.kube.protocol import ResourceKind

logger = logging.getLogger(__name__)

_Key = tuple[ResourceKind, str | None, str]


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7386) and return the new document."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def _fold_string_data(obj: dict[str, Any]) -> None:
    string_data = obj.pop("stringData", None) or {}
    data = obj.setdefault("data", {})
    for key, value in string_data.items():
        data[key] = base64.b64encode(str(value).encode()).decode()


def _matches(labels: dict[str, str], selector: str | None) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class InMemoryResourceClient:
    """ResourceClient holding objects in a dict.

    Only equality label selectors (``a=b,c=d``) are supported.
    """

    def __init__(self) -> None:
        self._objects: dict[_Key, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._resource_version = 0
        # Counters for tests that assert on write volume
        self.create_calls = 0
        self.patch_calls = 0

    def _key(self, kind: ResourceKind, name: str, namespace: str | None) -> _Key:
        return (kind, namespace if kind.info.namespaced else None, name)

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _require_namespace(self, kind: ResourceKind, namespace: str | None) -> None:
        if not kind.info.namespaced:
            return
        if not namespace:
            raise ValueError(f"{kind.info.kind} requires a namespace")
        if (ResourceKind.NAMESPACE, None, namespace) not in self._objects:
            raise ResourceNotFound(f"namespaces/{namespace} not found", status_code=404)

    async def create(
        self, kind: ResourceKind, body: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        async with self._lock:
            self.create_calls += 1
            obj = copy.deepcopy(body)
            meta = obj.setdefault("metadata", {})
            name = meta.get("name")
            if not name:
                raise ValueError("metadata.name is required")

            self._require_namespace(kind, namespace)
            key = self._key(kind, name, namespace)
            if key in self._objects:
                raise ResourceAlreadyExists(
                    f"{kind.info.plural}/{name} already exists", status_code=409
                )

            obj["apiVersion"] = kind.info.api_version
            obj["kind"] = kind.info.kind
            if kind.info.namespaced:
                meta["namespace"] = namespace
            meta["uid"] = secrets.token_hex(8)
            meta["resourceVersion"] = self._next_version()
            if kind is ResourceKind.SECRET:
                _fold_string_data(obj)

            self._objects[key] = obj
            return copy.deepcopy(obj)

    async def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> dict[str, Any]:
        obj = self._objects.get(self._key(kind, name, namespace))
        if obj is None:
            raise ResourceNotFound(f"{kind.info.plural}/{name} not found", status_code=404)
        return copy.deepcopy(obj)

    async def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        items = []
        for (obj_kind, obj_ns, _), obj in sorted(
            self._objects.items(), key=lambda kv: (kv[0][1] or "", kv[0][2])
        ):
            if obj_kind is not kind:
                continue
            if namespace and obj_ns != namespace:
                continue
            if not _matches(obj.get("metadata", {}).get("labels") or {}, label_selector):
                continue
            items.append(copy.deepcopy(obj))
        return items

    async def patch(
        self,
        kind: ResourceKind,
        name: str,
        patch: dict[str, Any],
        namespace: str | None = None,
    ) -> dict[str, Any]:
        async with self._lock:
            self.patch_calls += 1
            key = self._key(kind, name, namespace)
            current = self._objects.get(key)
            if current is None:
                raise ResourceNotFound(f"{kind.info.plural}/{name} not found", status_code=404)

            updated = merge_patch(current, patch)
            if kind is ResourceKind.SECRET:
                _fold_string_data(updated)
            updated["metadata"]["resourceVersion"] = self._next_version()
            self._objects[key] = updated
            return copy.deepcopy(updated)

    async def request_token(
        self, namespace: str, service_account: str, expiration_seconds: int = 3600
    ) -> str:
        await self.get(ResourceKind.SERVICE_ACCOUNT, service_account, namespace)
        return f"memory-token-{namespace}-{service_account}"

    async def close(self) -> None:
        logger.debug("In-memory resource client closed with %d objects", len(self._objects))
