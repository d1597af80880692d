"""Tests for credential obfuscation."""

from __future__ import annotations

import pytest

from cloud_vault.core.exceptions import ConfigError
from cloud_vault.core.obfuscate import deobfuscate, obfuscate


class TestObfuscate:
    def test_value_is_not_stored_in_clear(self) -> None:
        encoded = obfuscate("sl.refresh-token")
        assert "sl.refresh-token" not in encoded
        assert deobfuscate(encoded) == "sl.refresh-token"

    def test_plain_value_rejected(self) -> None:
        with pytest.raises(ConfigError, match="not a valid obfuscated value"):
            deobfuscate("sl.refresh-token")
