"""SFTP upload backend using paramiko."""

from __future__ import annotations

import contextlib
import stat
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import paramiko
from paramiko import AutoAddPolicy, SSHClient

from cloud_vault.core.exceptions import AuthenticationError, TransferError
from cloud_vault.core.models import BackupArtifact, BackupStorageConfig, FTPConfig, RemoteFileEntry
from cloud_vault.uploaders.base import BaseUploader, join_remote


@contextlib.contextmanager
def _sftp_errors(action: str) -> Iterator[None]:
    try:
        yield
    except (paramiko.SSHException, OSError) as exc:
        raise TransferError(f"SFTP {action} failed: {exc}") from exc


class SFTPUploader(BaseUploader):
    """Upload backups over SSH/SFTP.

    Selected instead of :class:`FTPUploader` when the FTP section sets
    ``sftp = true``; the FTP-only fields are ignored.
    """

    name = "SFTP"
    id = "ftp"

    def __init__(
            self,
            config: FTPConfig,
            storage: BackupStorageConfig,
            *,
            timeout: float = 60.0,
            **kwargs: Any,
    ) -> None:
        super().__init__(storage, **kwargs)
        self.config = config
        self.timeout = timeout
        self.ssh_client: SSHClient | None = None
        self.sftp_client: paramiko.SFTPClient | None = None
        self._initial_dir = "."
        with self._guard("connect", host=config.hostname):
            self._connect()

    @property
    def remote_base(self) -> str:
        return join_remote(self.config.base_directory, self.storage.remote_directory)

    @property
    def is_authenticated(self) -> bool:
        if self.ssh_client is None or self.sftp_client is None:
            return False
        transport = self.ssh_client.get_transport()
        return transport is not None and transport.is_active()

    def _connect(self) -> None:
        self.ssh_client = SSHClient()
        self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())

        connect_kwargs: dict[str, Any] = {
            "hostname": self.config.hostname,
            "port": self.config.port or 22,
            "username": self.config.username,
            "timeout": self.timeout,
        }
        if self.config.password:
            connect_kwargs["password"] = self.config.password.get_secret_value()
        if self.config.public_key:
            connect_kwargs["key_filename"] = str(self.config.public_key.expanduser())
            if self.config.passphrase:
                connect_kwargs["passphrase"] = self.config.passphrase.get_secret_value()

        try:
            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()
            self._initial_dir = self.sftp_client.normalize(".")
        except paramiko.AuthenticationException as exc:
            raise AuthenticationError(f"SSH authentication failed: {exc}") from exc
        except (paramiko.SSHException, OSError) as exc:
            raise TransferError(f"SSH connection failed: {exc}") from exc
        self.log.info("sftp_connected", host=self.config.hostname, cwd=self._initial_dir)

    def close(self) -> None:
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            with contextlib.suppress(Exception):
                self.sftp_client.close()
            self.sftp_client = None

        if self.ssh_client:
            with contextlib.suppress(Exception):
                self.ssh_client.close()
            self.ssh_client = None

    @property
    def _sftp(self) -> paramiko.SFTPClient:
        if self.sftp_client is None:
            raise TransferError("SFTP connection is closed")
        return self.sftp_client

    # ────────────── Navigation ──────────────

    def _enter(self, folder: str, *, create: bool = False) -> None:
        self._sftp.chdir(self._initial_dir)
        for segment in (s for s in folder.split("/") if s):
            try:
                self._sftp.chdir(segment)
            except OSError:
                if not create:
                    raise
                self._sftp.mkdir(segment)
                self._sftp.chdir(segment)

    # ────────────── Primitives ──────────────

    def _upload(self, artifact: BackupArtifact, remote_path: str) -> None:
        folder, _, filename = remote_path.rpartition("/")
        with _sftp_errors("upload"):
            self._enter(folder, create=True)
            self._sftp.put(str(artifact.path), filename)

    def _delete(self, remote_path: str) -> None:
        folder, _, filename = remote_path.rpartition("/")
        with _sftp_errors("delete"):
            self._enter(folder)
            self._sftp.remove(filename)

    def _list_entries(self, remote_folder: str) -> list[RemoteFileEntry]:
        with _sftp_errors("listing"):
            self._enter(remote_folder)
            attrs = self._sftp.listdir_attr(".")
        return [
            RemoteFileEntry(
                name=attr.filename,
                modified=datetime.fromtimestamp(attr.st_mtime or 0, UTC),
                size=attr.st_size or 0,
                is_dir=stat.S_ISDIR(attr.st_mode or 0),
            )
            for attr in attrs
        ]

    def _download(self, remote_path: str, local_path: Path) -> None:
        with _sftp_errors("download"):
            self._enter("")
            self._sftp.get(remote_path, str(local_path))
