"""Dropbox upload backend (bearer token HTTP API)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from cloud_vault.core.exceptions import AuthenticationError, TransferError
from cloud_vault.core.models import (
    BackupArtifact,
    BackupStorageConfig,
    DropboxConfig,
    RemoteFileEntry,
    UploadSession,
)
from cloud_vault.uploaders.auth import AuthTokenManager
from cloud_vault.uploaders.base import BaseUploader
from cloud_vault.uploaders.chunked import SessionUploadEngine, read_exact

TOKEN_URL = "https://api.dropbox.com/oauth2/token"
API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"

_OCTET_STREAM = {"Content-Type": "application/octet-stream"}


def _api_arg(payload: dict[str, Any]) -> dict[str, str]:
    # HTTP headers must stay ASCII; json.dumps escapes everything else.
    return {"Dropbox-API-Arg": json.dumps(payload)}


class DropboxUploader(BaseUploader):
    """Upload backups to a linked Dropbox account."""

    name = "Dropbox"
    id = "dropbox"

    def __init__(
            self,
            config: DropboxConfig,
            storage: BackupStorageConfig,
            *,
            client: httpx.Client | None = None,
            timeout: float = 60.0,
            **kwargs: Any,
    ) -> None:
        super().__init__(storage, **kwargs)
        self.config = config
        self._client = client or httpx.Client(timeout=timeout)
        self.auth = AuthTokenManager(
            token_url=TOKEN_URL,
            client_id=config.client_id,
            client_secret=config.client_secret.get_secret_value() if config.client_secret else "",
            refresh_token=config.refresh_token.get_secret_value() if config.refresh_token else "",
            client=self._client,
        )
        with self._guard("authenticate"):
            self.auth.refresh()

    @property
    def is_authenticated(self) -> bool:
        return self.auth.has_token

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _dropbox_path(remote_path: str) -> str:
        return f"/{remote_path}" if remote_path else ""

    # ────────────── HTTP plumbing ───────────

    def _request(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST with the bearer token; on 401 refresh once and retry once."""
        headers = dict(kwargs.pop("headers", {}))
        response = None
        for attempt in range(2):
            headers.update(self.auth.authorization_header())
            try:
                response = self._client.post(url, headers=headers, **kwargs)
            except httpx.HTTPError as exc:
                raise TransferError(f"Dropbox request to {url} failed: {exc}") from exc
            if response.status_code != 401:
                break
            self.auth.mark_expired()
            if attempt == 0:
                self.log.info("access_token_expired", url=url)
                self.auth.refresh()
        else:
            raise AuthenticationError("Dropbox rejected the access token after a refresh")

        if not response.is_success:
            raise TransferError(
                f"Dropbox returned {response.status_code} for {url}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def _rpc(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = self._request(f"{API_URL}/{endpoint}", json=payload)
        return response.json()

    # ────────────── Primitives ──────────────

    def _upload(self, artifact: BackupArtifact, remote_path: str) -> None:
        path = self._dropbox_path(remote_path)
        with open(artifact.path, "rb") as f:
            if artifact.size > self.config.chunk_threshold:
                engine = SessionUploadEngine(_DropboxSession(self), self.config.chunk_size)
                engine.upload(f, artifact.size, path)
            else:
                content = read_exact(f, artifact.size)
                self._request(
                    f"{CONTENT_URL}/files/upload",
                    headers={**_OCTET_STREAM, **_api_arg({"path": path})},
                    content=content,
                )

    def _delete(self, remote_path: str) -> None:
        self._rpc("files/delete_v2", {"path": self._dropbox_path(remote_path)})

    def _list_entries(self, remote_folder: str) -> list[RemoteFileEntry]:
        data = self._rpc("files/list_folder", {"path": self._dropbox_path(remote_folder)})
        raw = list(data.get("entries", []))
        while data.get("has_more"):
            data = self._rpc("files/list_folder/continue", {"cursor": data["cursor"]})
            raw.extend(data.get("entries", []))
        return [_to_entry(e) for e in raw]

    def _download(self, remote_path: str, local_path: Path) -> None:
        response = self._request(
            f"{CONTENT_URL}/files/download",
            headers=_api_arg({"path": self._dropbox_path(remote_path)}),
        )
        local_path.write_bytes(response.content)


class _DropboxSession:
    """upload_session/start, append_v2 and finish calls for one uploader."""

    def __init__(self, uploader: DropboxUploader) -> None:
        self._uploader = uploader

    def _post(self, endpoint: str, chunk: bytes, arg: dict[str, Any] | None = None) -> httpx.Response:
        headers = dict(_OCTET_STREAM)
        if arg is not None:
            headers.update(_api_arg(arg))
        return self._uploader._request(
            f"{CONTENT_URL}/files/upload_session/{endpoint}", headers=headers, content=chunk,
        )

    def start(self, chunk: bytes) -> str:
        response = self._post("start", chunk)
        try:
            return response.json()["session_id"]
        except (ValueError, KeyError) as exc:
            raise TransferError("Dropbox did not return an upload session id") from exc

    def append(self, session: UploadSession, chunk: bytes) -> None:
        self._post("append_v2", chunk, {"cursor": _cursor(session)})

    def finish(self, session: UploadSession, chunk: bytes) -> None:
        self._post("finish", chunk, {"cursor": _cursor(session), "commit": {"path": session.path}})


def _cursor(session: UploadSession) -> dict[str, Any]:
    return {"session_id": session.session_id, "offset": session.offset}


def _to_entry(raw: dict[str, Any]) -> RemoteFileEntry:
    is_dir = raw.get(".tag") == "folder"
    stamp = raw.get("server_modified") or raw.get("client_modified")
    modified = (
        datetime.fromisoformat(stamp.replace("Z", "+00:00"))
        if stamp
        else datetime.fromtimestamp(0, UTC)
    )
    return RemoteFileEntry(
        name=raw["name"],
        modified=modified,
        size=int(raw.get("size", 0)),
        is_dir=is_dir,
    )
