"""FTP and FTPS upload backend."""

from __future__ import annotations

import contextlib
import ftplib
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cloud_vault.core.exceptions import AuthenticationError, TransferError
from cloud_vault.core.models import BackupArtifact, BackupStorageConfig, FTPConfig, RemoteFileEntry
from cloud_vault.uploaders.base import BaseUploader, join_remote


@contextlib.contextmanager
def _ftp_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ftplib.all_errors as exc:
        raise TransferError(f"FTP {action} failed: {exc}") from exc


def _parse_modify(value: str | None) -> datetime:
    """MLSD ``modify`` facts are UTC ``YYYYMMDDHHMMSS[.sss]``."""
    if not value:
        return datetime.fromtimestamp(0, UTC)
    return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=UTC)


class FTPUploader(BaseUploader):
    """Upload backups over plain FTP or explicit-TLS FTPS.

    Every operation starts from the directory the session began in, so a
    previous call can never leave later ones in the wrong place.
    """

    name = "FTP"
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
        self._ftp: ftplib.FTP | None = None
        self._initial_dir = "/"
        with self._guard("connect", host=config.hostname):
            self._connect()

    @property
    def remote_base(self) -> str:
        return join_remote(self.config.base_directory, self.storage.remote_directory)

    @property
    def is_authenticated(self) -> bool:
        return self._ftp is not None and self._ftp.sock is not None

    def _connect(self) -> None:
        client = ftplib.FTP_TLS() if self.config.ftps else ftplib.FTP()
        password = self.config.password.get_secret_value() if self.config.password else ""
        with _ftp_errors("connect"):
            client.connect(self.config.hostname, self.config.port or 21, timeout=self.timeout)
        try:
            client.login(self.config.username, password)
        except ftplib.error_perm as exc:
            client.close()
            raise AuthenticationError(f"FTP login rejected: {exc}") from exc
        try:
            with _ftp_errors("session setup"):
                if isinstance(client, ftplib.FTP_TLS):
                    client.prot_p()
                client.set_pasv(True)
                client.voidcmd("TYPE I")
                self._initial_dir = client.pwd()
        except TransferError:
            client.close()
            raise
        self._ftp = client
        self.log.info("ftp_connected", host=self.config.hostname, cwd=self._initial_dir)

    def close(self) -> None:
        if self._ftp is None:
            return
        try:
            self._ftp.quit()
        except ftplib.all_errors:
            self._ftp.close()
        self._ftp = None

    @property
    def _client(self) -> ftplib.FTP:
        if self._ftp is None:
            raise TransferError("FTP connection is closed")
        return self._ftp

    # ────────────── Navigation ──────────────

    def _reset_working_directory(self) -> None:
        self._client.cwd(self._initial_dir)

    def _create_then_enter(self, folder: str) -> None:
        for segment in (s for s in folder.split("/") if s):
            try:
                self._client.cwd(segment)
            except ftplib.error_perm:
                self._client.mkd(segment)
                self._client.cwd(segment)

    def _enter(self, folder: str, *, create: bool = False) -> None:
        self._reset_working_directory()
        if create:
            self._create_then_enter(folder)
        elif folder:
            self._client.cwd(folder)

    # ────────────── Primitives ──────────────

    def _upload(self, artifact: BackupArtifact, remote_path: str) -> None:
        folder, _, filename = remote_path.rpartition("/")
        with _ftp_errors("upload"):
            self._enter(folder, create=True)
            with open(artifact.path, "rb") as f:
                self._client.storbinary(f"STOR {filename}", f)

    def _delete(self, remote_path: str) -> None:
        folder, _, filename = remote_path.rpartition("/")
        with _ftp_errors("delete"):
            self._enter(folder)
            self._client.delete(filename)

    def _list_entries(self, remote_folder: str) -> list[RemoteFileEntry]:
        entries: list[RemoteFileEntry] = []
        with _ftp_errors("listing"):
            self._enter(remote_folder)
            for name, facts in self._client.mlsd(facts=["type", "modify", "size"]):
                kind = facts.get("type", "file")
                if kind in ("cdir", "pdir"):
                    continue
                entries.append(RemoteFileEntry(
                    name=name,
                    modified=_parse_modify(facts.get("modify")),
                    size=int(facts.get("size", 0)),
                    is_dir=kind == "dir",
                ))
        return entries

    def _download(self, remote_path: str, local_path: Path) -> None:
        with _ftp_errors("download"):
            self._reset_working_directory()
            with open(local_path, "wb") as f:
                self._client.retrbinary(f"RETR {remote_path}", f.write)
