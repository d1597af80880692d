"""Tests for the session and fragment transfer engines."""

from __future__ import annotations

import io

import pytest
from structlog.testing import capture_logs

from cloud_vault.core.exceptions import TransferError
from cloud_vault.core.models import UploadSession
from cloud_vault.uploaders.chunked import (
    FragmentUploadEngine,
    SessionUploadEngine,
    discover_staging_dir,
    fragment_name,
    read_exact,
)

CHUNK = 10 * 1024 * 1024


class ZeroStream:
    """Readable stream of *length* zero bytes without holding them in memory."""

    def __init__(self, length: int) -> None:
        self.remaining = length

    def read(self, size: int = -1) -> bytes:
        n = self.remaining if size < 0 else min(size, self.remaining)
        self.remaining -= n
        return b"\0" * n


class RecordingSession:
    """Session transport that records (call, offset, length) tuples."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int, int]] = []

    def start(self, chunk: bytes) -> str:
        self.calls.append(("start", 0, len(chunk)))
        return "sess-1"

    def append(self, session: UploadSession, chunk: bytes) -> None:
        assert session.session_id == "sess-1"
        self.calls.append(("append", session.offset, len(chunk)))

    def finish(self, session: UploadSession, chunk: bytes) -> None:
        self.calls.append(("finish", session.offset, len(chunk)))


class TestReadExact:
    def test_short_stream(self) -> None:
        with pytest.raises(TransferError, match="ended after 3"):
            read_exact(io.BytesIO(b"abc"), 5)


class TestSessionUploadEngine:
    def test_two_hundred_megabytes(self) -> None:
        transport = RecordingSession()
        session = SessionUploadEngine(transport, CHUNK).upload(
            ZeroStream(200_000_000), 200_000_000, "/backups/site/big.zip",
        )

        assert len(transport.calls) == 20
        assert transport.calls[0] == ("start", 0, CHUNK)
        assert [c[0] for c in transport.calls[1:-1]] == ["append"] * 18
        assert transport.calls[-1] == ("finish", 199_229_440, 770_560)
        assert session.offset == 200_000_000

        # offsets are contiguous and strictly increasing
        expected = 0
        for _, offset, size in transport.calls:
            assert offset == expected
            expected += size
        assert expected == 200_000_000

    def test_exact_multiple_of_chunk(self) -> None:
        transport = RecordingSession()
        SessionUploadEngine(transport, 4).upload(io.BytesIO(b"x" * 12), 12, "/a.zip")
        assert transport.calls == [("start", 0, 4), ("append", 4, 4), ("finish", 8, 4)]

    def test_failure_aborts(self) -> None:
        class Failing(RecordingSession):
            def append(self, session: UploadSession, chunk: bytes) -> None:
                raise TransferError("boom", status_code=500)

        transport = Failing()
        with pytest.raises(TransferError):
            SessionUploadEngine(transport, 4).upload(io.BytesIO(b"x" * 20), 20, "/a.zip")
        assert [c[0] for c in transport.calls] == ["start"]


class FakeFragments:
    """Fragment transport with scripted PUT failures."""

    def __init__(self, put_failures: int = 0, move_status: int | None = None) -> None:
        self.put_failures = put_failures
        self.move_status = move_status
        self.log: list[tuple[str, str]] = []
        self.put_attempts = 0

    def mkcol(self, url: str) -> None:
        self.log.append(("MKCOL", url))

    def put(self, url: str, data: bytes) -> None:
        self.put_attempts += 1
        if self.put_failures > 0:
            self.put_failures -= 1
            raise TransferError("bad gateway", status_code=502)
        self.log.append(("PUT", url.rsplit("/", 1)[-1]))

    def move(self, source: str, destination: str) -> None:
        if self.move_status is not None:
            raise TransferError("move failed", status_code=self.move_status)
        self.log.append(("MOVE", destination))

    def delete(self, url: str) -> None:
        self.log.append(("DELETE", url))


class TestFragmentUploadEngine:
    STAGING = "https://cloud.example.com/remote.php/dav/uploads/alice"

    def test_fragment_names_sort_in_byte_order(self) -> None:
        names = [fragment_name(s, s + 9) for s in (0, 10, 100, 1000, 10_000_000_000)]
        assert sorted(names) == names
        assert fragment_name(0, 9) == "00000000000000000000-00000000000000000009"

    def test_upload_and_assemble(self, no_sleep) -> None:
        transport = FakeFragments()
        engine = FragmentUploadEngine(transport, self.STAGING, 4, sleep=no_sleep)
        engine.upload(io.BytesIO(b"0123456789"), 10, "https://cloud.example.com/f/a.zip")

        verbs = [v for v, _ in transport.log]
        assert verbs == ["MKCOL", "PUT", "PUT", "PUT", "MOVE"]
        assert transport.log[0][1].startswith(self.STAGING + "/")
        assert [n for v, n in transport.log if v == "PUT"] == [
            fragment_name(0, 3), fragment_name(4, 7), fragment_name(8, 9),
        ]
        assert transport.log[-1] == ("MOVE", "https://cloud.example.com/f/a.zip")

    def test_nine_failures_then_success(self, no_sleep) -> None:
        transport = FakeFragments(put_failures=9)
        engine = FragmentUploadEngine(transport, self.STAGING, 16, sleep=no_sleep)
        with capture_logs() as logs:
            engine.upload(io.BytesIO(b"abc"), 3, "https://cloud.example.com/f/a.zip")

        assert transport.put_attempts == 10
        assert sum(e["event"] == "fragment_upload_retry" for e in logs) == 9
        # linearly increasing waits starting at zero
        assert no_sleep.calls == [float(i) for i in range(9)]

    def test_ten_failures_give_up(self, no_sleep) -> None:
        transport = FakeFragments(put_failures=100)
        engine = FragmentUploadEngine(transport, self.STAGING, 16, sleep=no_sleep)
        with pytest.raises(TransferError, match="bad gateway"):
            engine.upload(io.BytesIO(b"abc"), 3, "https://cloud.example.com/f/a.zip")

        assert transport.put_attempts == 10
        # staging directory removed before the error propagated
        assert transport.log[-1][0] == "DELETE"

    def test_gateway_timeout_on_assembly_is_success(self, no_sleep) -> None:
        transport = FakeFragments(move_status=504)
        engine = FragmentUploadEngine(transport, self.STAGING, 16, sleep=no_sleep)
        with capture_logs() as logs:
            engine.upload(io.BytesIO(b"abc"), 3, "https://cloud.example.com/f/a.zip")

        assert "DELETE" not in [v for v, _ in transport.log]
        assert any(e["event"] == "fragment_assembly_timeout" for e in logs)

    def test_other_assembly_failure_cleans_up(self, no_sleep) -> None:
        transport = FakeFragments(move_status=500)
        engine = FragmentUploadEngine(transport, self.STAGING, 16, sleep=no_sleep)
        with pytest.raises(TransferError):
            engine.upload(io.BytesIO(b"abc"), 3, "https://cloud.example.com/f/a.zip")
        assert transport.log[-1][0] == "DELETE"


class TestDiscoverStagingDir:
    def test_candidate_order(self) -> None:
        tried: list[str] = []

        def exists(url: str) -> bool:
            tried.append(url)
            return False

        result = discover_staging_dir(exists, "https://cloud.example.com/nc/remote.php/dav/files/alice", "alice")
        assert result is None
        assert tried == [
            "https://cloud.example.com/remote.php/dav/uploads/alice",
            "https://cloud.example.com/uploads/alice",
            "https://cloud.example.com/nc/uploads/alice",
            "https://cloud.example.com/nc/remote.php/uploads/alice",
            "https://cloud.example.com/nc/remote.php/dav/uploads/alice",
            "https://cloud.example.com/nc/remote.php/dav/files/uploads/alice",
            "https://cloud.example.com/nc/remote.php/dav/files/alice/uploads/alice",
        ]

    def test_first_hit_wins(self) -> None:
        found = discover_staging_dir(
            lambda url: url.endswith("/nc/remote.php/dav/uploads/alice"),
            "https://cloud.example.com/nc/remote.php/dav/files/alice",
            "alice",
        )
        assert found == "https://cloud.example.com/nc/remote.php/dav/uploads/alice"
