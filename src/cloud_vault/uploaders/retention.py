"""Retention policy enforcement for remote backup folders."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from cloud_vault.core.exceptions import PruneError
from cloud_vault.core.models import RemoteFileEntry, RetentionPolicy
from cloud_vault.logging import get_logger

log = get_logger(__name__)


def select_prune_candidates(
        entries: Iterable[RemoteFileEntry],
        policy: RetentionPolicy,
) -> list[RemoteFileEntry]:
    """Return the entries to delete, oldest first.

    Only files recognised as backup artifacts count towards the limit; folders
    and unrelated files are never touched.
    """
    if policy.retain_all:
        return []
    backups = sorted(
        (e for e in entries if not e.is_dir and policy.is_backup_artifact(e.name)),
        key=lambda e: e.sort_key,
    )
    excess = len(backups) - policy.keep_count
    return backups[:excess] if excess > 0 else []


class RetentionPruner:
    """Deletes the oldest backups in a remote folder beyond the keep count.

    Pruning is not transactional: deletions happen one call at a time and a
    failure stops the run without restoring anything already deleted.
    """

    def __init__(
            self,
            backend_name: str,
            policy: RetentionPolicy,
            list_entries: Callable[[str], list[RemoteFileEntry]],
            delete: Callable[[str], None],
    ) -> None:
        self.backend_name = backend_name
        self.policy = policy
        self._list_entries = list_entries
        self._delete = delete

    def prune(self, remote_folder: str) -> list[str]:
        """Prune *remote_folder*. Returns the names that were deleted.

        Raises:
            PruneError: If the listing or any deletion fails.
        """
        if self.policy.retain_all:
            return []

        try:
            entries = self._list_entries(remote_folder)
        except Exception as exc:
            raise PruneError(f"Could not list {remote_folder!r} for pruning: {exc}") from exc

        candidates = select_prune_candidates(entries, self.policy)
        if not candidates:
            return []

        backup_count = sum(
            1 for e in entries if not e.is_dir and self.policy.is_backup_artifact(e.name)
        )
        log.info(
            "retention_limit_reached",
            file_count=backup_count,
            upload_method=self.backend_name,
            file_limit=self.policy.keep_count,
            folder=remote_folder,
        )

        deleted: list[str] = []
        for entry in candidates:
            path = f"{remote_folder}/{entry.name}" if remote_folder else entry.name
            try:
                self._delete(path)
            except Exception as exc:
                raise PruneError(
                    f"Deleting {path!r} failed after {len(deleted)} deletion(s): {exc}"
                ) from exc
            deleted.append(entry.name)
            log.info("backup_pruned", path=path, upload_method=self.backend_name)

        return deleted
