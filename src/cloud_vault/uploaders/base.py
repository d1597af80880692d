"""Abstract base class for upload backends."""

from __future__ import annotations

import abc
import contextlib
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import ClassVar

from cloud_vault.core.exceptions import AuthenticationError
from cloud_vault.core.models import (
    BackupArtifact,
    BackupStorageConfig,
    RemoteFileEntry,
    UploadResult,
    sanitize_category,
)
from cloud_vault.logging import get_logger, log_failure
from cloud_vault.uploaders.retention import RetentionPruner


def join_remote(*parts: str) -> str:
    """Join remote path segments with ``/``, dropping empty ones."""
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


class BaseUploader(abc.ABC):
    """Interface every upload backend implements.

    Public operations never raise. Failures are logged, recorded in the sticky
    :attr:`is_error_while_uploading` flag and reported through the returned
    :class:`UploadResult` where there is one. Subclasses implement the
    ``_upload``/``_delete``/``_list_entries``/``_download`` primitives, which
    raise freely.
    """

    name: ClassVar[str]
    id: ClassVar[str]

    def __init__(
            self,
            storage: BackupStorageConfig,
            *,
            suppress_errors: bool = False,
            test_delay: float = 5.0,
            sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.storage = storage
        self.suppress_errors = suppress_errors
        self.test_delay = test_delay
        self._sleep = sleep
        self._error_occurred = False
        self.log = get_logger(__name__).bind(backend=self.id)
        self.pruner = RetentionPruner(
            backend_name=self.name,
            policy=storage.retention,
            list_entries=self._list_entries,
            delete=self._delete,
        )

    # ────────────── Status ──────────────────

    @property
    def is_error_while_uploading(self) -> bool:
        """True once any operation has failed. Never resets."""
        return self._error_occurred

    @property
    @abc.abstractmethod
    def is_authenticated(self) -> bool:
        """Whether the backend holds a usable credential or open connection."""

    @property
    def remote_base(self) -> str:
        """Remote folder all backup paths are relative to."""
        return self.storage.remote_directory.strip("/")

    def remote_path(self, *parts: str) -> str:
        return join_remote(self.remote_base, *parts)

    def close(self) -> None:
        """Release held connections. Safe to call more than once."""

    # ────────────── Public operations ───────

    def test(self, artifact: BackupArtifact) -> UploadResult:
        """Upload a small proof file to the remote base, wait, then delete it."""
        with self._guard("test", file=artifact.name) as result:
            self._ensure_ready()
            remote = self.remote_path(artifact.name)
            self._upload(artifact, remote)
            self._sleep(self.test_delay)
            self._delete(remote)
            self.log.info("test_complete", path=remote)
        return result

    def upload_file(self, artifact: BackupArtifact, category: str | None = None) -> UploadResult:
        """Upload *artifact* into ``remote_base/category`` and prune old backups there."""
        folder = sanitize_category(artifact.category if category is None else category)
        with self._guard("upload", file=artifact.name, category=folder) as result:
            self._ensure_ready()
            remote = self.remote_path(folder, artifact.name)
            self.log.info("upload_start", path=remote, size=artifact.size)
            self._upload(artifact, remote)
            self.log.info("upload_complete", path=remote, size=artifact.size)

            try:
                result.pruned = self.prune(folder)
            except Exception as exc:
                # The artifact is already stored; a failed prune does not undo that.
                result.prune_error = str(exc)
                log_failure(
                    self.log, "prune_failed", exc,
                    suppress_stack=self.suppress_errors, category=folder,
                )
        return result

    def prune(self, category: str) -> list[str]:
        """Delete the oldest backups in *category* beyond the keep count.

        Raises:
            PruneError: If listing or a deletion fails.
        """
        return self.pruner.prune(self.remote_path(category))

    def download_file(self, remote_path: str, category: str) -> Path | None:
        """Fetch *remote_path* (relative to the remote base) into the local category folder."""
        folder = sanitize_category(category)
        with self._guard("download", path=remote_path, category=folder):
            self._ensure_ready()
            target_dir = self.storage.local_directory / folder
            target_dir.mkdir(parents=True, exist_ok=True)
            local_path = target_dir / Path(remote_path).name
            self._download(self.remote_path(remote_path), local_path)
            self.log.info("download_complete", path=remote_path, destination=str(local_path))
            return local_path
        return None

    def list_files(self, folder_path: str) -> list[str]:
        """Return relative paths of every file under *folder_path*, recursively."""
        with self._guard("list", folder=folder_path):
            self._ensure_ready()
            return self._walk(self.remote_path(folder_path), "")
        return []

    # ────────────── Primitives ──────────────

    @abc.abstractmethod
    def _upload(self, artifact: BackupArtifact, remote_path: str) -> None:
        """Transfer *artifact* to *remote_path*, creating missing folders."""

    @abc.abstractmethod
    def _delete(self, remote_path: str) -> None:
        """Delete one remote file."""

    @abc.abstractmethod
    def _list_entries(self, remote_folder: str) -> list[RemoteFileEntry]:
        """List the direct children of *remote_folder*."""

    @abc.abstractmethod
    def _download(self, remote_path: str, local_path: Path) -> None:
        """Write the remote file at *remote_path* to *local_path*."""

    # ────────────── Helpers ─────────────────

    def _ensure_ready(self) -> None:
        if not self.is_authenticated:
            raise AuthenticationError(f"{self.name} is not authenticated")

    def _walk(self, remote_folder: str, prefix: str) -> list[str]:
        paths: list[str] = []
        for entry in sorted(self._list_entries(remote_folder), key=lambda e: e.name):
            if entry.is_dir:
                paths.extend(self._walk(join_remote(remote_folder, entry.name), f"{prefix}{entry.name}/"))
            else:
                paths.append(f"{prefix}{entry.name}")
        return paths

    @contextlib.contextmanager
    def _guard(self, operation: str, **context: object) -> Iterator[UploadResult]:
        """Absorb any failure inside the block into the error flag and the result."""
        result = UploadResult()
        try:
            yield result
        except Exception as exc:
            self._error_occurred = True
            failed = UploadResult.failure(exc)
            result.ok = False
            result.error_kind = failed.error_kind
            result.message = failed.message
            log_failure(
                self.log, f"{operation}_failed", exc,
                suppress_stack=self.suppress_errors, **context,
            )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} base={self.remote_base!r}>"
