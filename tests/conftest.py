"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from cloud_vault.core.models import BackupArtifact, BackupStorageConfig


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host CLOUD_VAULT_* variables out of config loading."""
    for key in list(os.environ):
        if key.startswith("CLOUD_VAULT_"):
            monkeypatch.delenv(key)


@pytest.fixture()
def sample_file(tmp_path: Path) -> Path:
    """A small backup archive."""
    f = tmp_path / "site-2024-05-01.zip"
    f.write_bytes(b"PK\x03\x04" + b"backup payload\n" * 100)
    return f


@pytest.fixture()
def artifact(sample_file: Path) -> BackupArtifact:
    return BackupArtifact.from_path(sample_file, "site")


@pytest.fixture()
def storage(tmp_path: Path) -> BackupStorageConfig:
    return BackupStorageConfig(
        remote_directory="backups",
        local_directory=tmp_path / "downloads",
        keep_count=2,
    )


class NoSleep:
    """Records requested sleeps instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture()
def no_sleep() -> NoSleep:
    return NoSleep()
