"""Reversible obfuscation for credentials stored in the config file.

This keeps tokens from being readable at a glance. It is not encryption in any
meaningful sense: the key ships with the package.
"""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from cloud_vault.core.exceptions import ConfigError

_KEY = base64.urlsafe_b64encode(hashlib.sha256(b"cloud-vault/credential-obfuscation").digest())
_fernet = Fernet(_KEY)


def obfuscate(plaintext: str) -> str:
    """Encode a credential for storage at rest."""
    return _fernet.encrypt(plaintext.encode()).decode()


def deobfuscate(encoded: str) -> str:
    """Decode a value produced by :func:`obfuscate`.

    Raises:
        ConfigError: If the value was not produced by :func:`obfuscate`.
    """
    try:
        return _fernet.decrypt(encoded.encode()).decode()
    except (InvalidToken, ValueError) as exc:
        raise ConfigError("Stored credential is not a valid obfuscated value") from exc
