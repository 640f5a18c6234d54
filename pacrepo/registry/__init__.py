"""Access to the remote package registry."""

from .client import RegistryClient, RegistryError, RegistryResult, record_from_result

__all__ = ["RegistryClient", "RegistryError", "RegistryResult", "record_from_result"]
