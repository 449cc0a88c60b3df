"""Credential persistence."""

from .store import CredentialStore

__all__ = ["CredentialStore"]
