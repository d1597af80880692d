"""Custom exceptions for cloud-vault."""

from __future__ import annotations


class CloudVaultError(Exception):
    """Base exception for all cloud-vault errors."""

    kind = "unknown"


class ConfigError(CloudVaultError):
    """Raised when configuration is invalid or missing."""

    kind = "config"


class UploaderNotFoundError(CloudVaultError):
    """Raised when a requested upload backend is not available."""

    kind = "config"


class AuthenticationError(CloudVaultError):
    """Raised when credentials are rejected or a token cannot be obtained."""

    kind = "auth"


class TransferError(CloudVaultError):
    """Raised when moving bytes to or from a remote fails."""

    kind = "transfer"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PruneError(CloudVaultError):
    """Raised when retention pruning cannot complete."""

    kind = "prune"
