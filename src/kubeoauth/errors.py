# Error taxonomy for the credential lifecycle.
# Created: 2026-10-18
#
# Login errors are fatal to one login attempt and propagate to the web layer.
# Provisioning and refresh errors are caught per unit of work and logged.

from __future__ import annotations


class KubeOAuthError(Exception):
    """Base class for all kubeoauth errors."""


class ConfigError(KubeOAuthError):
    """Settings are missing or inconsistent."""


# ---------------------------------------------------------------------------
# Login path
# ---------------------------------------------------------------------------


class LoginError(KubeOAuthError):
    """A login attempt failed and must be restarted by the user."""


class StateMismatch(LoginError):
    """Returned anti-forgery state is missing, already consumed or wrong."""


class ExchangeFailed(LoginError):
    """Authorization code could not be exchanged for a token."""


class IdentityResolutionFailed(LoginError):
    """Identity endpoint errored or returned no usable identifier."""


# ---------------------------------------------------------------------------
# Background path
# ---------------------------------------------------------------------------


class ProvisioningStepFailed(KubeOAuthError):
    """One provisioning step failed. Later steps still run."""

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class StorePersistFailed(KubeOAuthError):
    """Credential could not be read from or written to the backing store."""


class CredentialNotFound(StorePersistFailed):
    """No credential object exists for the tenant."""

    def __init__(self, tenant_id: str):
        super().__init__(f"No credential stored for tenant {tenant_id!r}")
        self.tenant_id = tenant_id


class RefreshFailed(KubeOAuthError):
    """Provider rejected the refresh token, timed out or answered garbage."""


# ---------------------------------------------------------------------------
# Resource client
# ---------------------------------------------------------------------------


class ResourceClientError(KubeOAuthError):
    """Cluster API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ResourceAlreadyExists(ResourceClientError):
    """Create hit an existing object (HTTP 409)."""


class ResourceNotFound(ResourceClientError):
    """Object or its namespace does not exist (HTTP 404)."""
