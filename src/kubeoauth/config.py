# Settings - environment-driven configuration for kubeoauth.
# Created: 2026-10-18
#
# Values come from KUBEOAUTH_* environment variables or a .env file.
# Build one Settings instance at startup and pass it into each component.

from __future__ import annotations

import logging
import secrets

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kubeoauth.errors import ConfigError

logger = logging.getLogger(__name__)

SPOTIFY_SCOPES = [
    # Who is signed in
    "user-read-private",
    "user-read-currently-playing",
    "user-read-playback-state",
    "user-modify-playback-state",
]

IN_CLUSTER_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"
IN_CLUSTER_CA_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"


class Settings(BaseSettings):
    """kubeoauth configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KUBEOAUTH_",
        env_file=".env",
        extra="ignore",
    )

    # OAuth provider
    client_id: str = ""
    client_secret: str = ""
    base_url: str = "https://localhost:8443"
    scopes: list[str] = Field(default_factory=lambda: list(SPOTIFY_SCOPES))
    auth_url: str = "https://accounts.spotify.com/authorize"
    token_url: str = "https://accounts.spotify.com/api/token"
    identity_url: str = "https://api.spotify.com/v1/me"
    http_timeout: float = 15.0

    # Refresh sweep
    refresh_interval: float = 600.0
    tenant_refresh_timeout: float = 30.0

    # Credential secret
    secret_name: str = "spotify-oauth"
    label_key: str = "dj-kubelet.com/oauth-refresher"
    label_value: str = "spotify"

    # Tenant provisioning
    namespace_prefix: str = "spotify-"
    grant_prefix: str = "dj-kubelet"
    cluster_role: str = "dj-kubelet:user-global"
    namespace_role: str = "dj-kubelet:user"
    controller_template_namespace: str = ""
    controller_deployment: str = "dj-controller"
    controller_replicas: int = 1

    # Cluster access
    kube_backend: str = "kubernetes"
    kube_api_url: str = "https://kubernetes.default.svc"
    kube_token: str = ""
    kube_token_file: str = IN_CLUSTER_TOKEN_FILE
    kube_ca_file: str = IN_CLUSTER_CA_FILE
    kube_verify_ssl: bool = True
    public_api_server: str = "https://localhost:6443"

    # Web layer
    session_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    log_level: str = "INFO"

    @field_validator("kube_backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        if v not in ("kubernetes", "memory"):
            raise ValueError("kube_backend must be 'kubernetes' or 'memory'")
        return v

    @field_validator("refresh_interval", "tenant_refresh_timeout", "http_timeout")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url.rstrip('/')}/callback"

    @property
    def management_selector(self) -> str:
        """Label selector matching every credential secret we own."""
        return f"{self.label_key}={self.label_value}"

    @property
    def controller_enabled(self) -> bool:
        return bool(self.controller_template_namespace)

    def validate_for_serving(self) -> None:
        """Raise ConfigError if the OAuth client is not configured."""
        missing = [
            name for name in ("client_id", "client_secret") if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(
                "Missing required settings: "
                + ", ".join(f"KUBEOAUTH_{m.upper()}" for m in missing)
            )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide Settings, loading it on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.debug("Settings loaded (backend=%s)", _settings.kube_backend)
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
