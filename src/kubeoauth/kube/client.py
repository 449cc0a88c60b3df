# Kubernetes resource client - REST calls against the API server via httpx.
# Created: 2026-10-18

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx

from kubeoauth.config import Settings
from kubeoauth.errors import ResourceAlreadyExists, ResourceClientError, ResourceNotFound
from kubeoauth.kube.protocol import ResourceKind

logger = logging.getLogger(__name__)

_MERGE_PATCH = "application/merge-patch+json"


class KubeResourceClient:
    """ResourceClient backed by the Kubernetes REST API.

    One instance (and one pooled httpx.AsyncClient) is shared by every
    component. Call close() on shutdown.
    """

    def __init__(
        self,
        api_url: str,
        token: str = "",
        verify: bool | str = True,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.api_url = api_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            verify=verify,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> KubeResourceClient:
        """Build a client from explicit settings or the in-cluster mounts."""
        token = settings.kube_token
        if not token:
            token_path = Path(settings.kube_token_file)
            if token_path.exists():
                token = token_path.read_text().strip()
            else:
                logger.warning("No cluster token configured and %s is missing", token_path)

        verify: bool | str = settings.kube_verify_ssl
        if verify and Path(settings.kube_ca_file).exists():
            verify = settings.kube_ca_file

        return cls(
            api_url=settings.kube_api_url,
            token=token,
            verify=verify,
            timeout=settings.http_timeout,
        )

    async def close(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # URL building
    # ------------------------------------------------------------------

    @staticmethod
    def _path(kind: ResourceKind, namespace: str | None, name: str | None = None) -> str:
        info = kind.info
        if info.namespaced and namespace:
            path = f"{info.api_path}/namespaces/{namespace}/{info.plural}"
        elif info.namespaced or not namespace:
            path = f"{info.api_path}/{info.plural}"
        else:
            raise ValueError(f"{info.kind} is cluster-scoped; namespace must be None")
        if name:
            path = f"{path}/{name}"
        return path

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ResourceClientError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 409:
            raise ResourceAlreadyExists(f"{path} already exists", status_code=409)
        if resp.status_code == 404:
            raise ResourceNotFound(f"{path} not found", status_code=404)
        if resp.is_error:
            raise ResourceClientError(
                f"{method} {path} returned {resp.status_code}: {_status_message(resp)}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ResourceClientError(f"{method} {path} returned invalid JSON") from e

    # ------------------------------------------------------------------
    # ResourceClient
    # ------------------------------------------------------------------

    async def create(
        self, kind: ResourceKind, body: dict[str, Any], namespace: str | None = None
    ) -> dict[str, Any]:
        body = {"apiVersion": kind.info.api_version, "kind": kind.info.kind, **body}
        return await self._request("POST", self._path(kind, namespace), json=body)

    async def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> dict[str, Any]:
        return await self._request("GET", self._path(kind, namespace, name))

    async def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        params = {"labelSelector": label_selector} if label_selector else None
        data = await self._request("GET", self._path(kind, namespace), params=params)
        return data.get("items") or []

    async def patch(
        self,
        kind: ResourceKind,
        name: str,
        patch: dict[str, Any],
        namespace: str | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "PATCH",
            self._path(kind, namespace, name),
            content=json.dumps(patch),
            headers={"Content-Type": _MERGE_PATCH},
        )

    async def request_token(
        self, namespace: str, service_account: str, expiration_seconds: int = 3600
    ) -> str:
        path = self._path(ResourceKind.SERVICE_ACCOUNT, namespace, service_account) + "/token"
        body = {
            "apiVersion": "authentication.k8s.io/v1",
            "kind": "TokenRequest",
            "spec": {"expirationSeconds": expiration_seconds},
        }
        data = await self._request("POST", path, json=body)
        token = data.get("status", {}).get("token")
        if not token:
            raise ResourceClientError(
                f"TokenRequest for {namespace}/{service_account} returned no token"
            )
        return token


def _status_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict) and data.get("message"):
        return data["message"]
    return resp.text
