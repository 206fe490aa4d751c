"""Tests for tiercache.tiers.disk -- layout, expiry, size limit, failures."""

from __future__ import annotations

import os
import struct
from pathlib import Path

import pytest

from tiercache.codec import JsonCodec
from tiercache.exceptions import (
    DecodingError,
    EncodingError,
    StorageReadError,
    StorageWriteError,
)
from tiercache.tiers import DiskTier, entry_name

NEVER = 2**63 - 1


def _entry_path(directory: Path, key: str) -> Path:
    return directory / entry_name(key)


@pytest.fixture
def directory(tmp_path: Path) -> Path:
    return tmp_path / "cache" / "test"


@pytest.fixture
def disk(directory: Path, clock) -> DiskTier:
    return DiskTier(directory, JsonCodec(), clock=clock)


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


class TestLayout:
    def test_directory_created_on_first_write(self, disk: DiskTier, directory: Path) -> None:
        assert not directory.exists()
        disk.set("a", 1)
        assert directory.is_dir()

    def test_file_named_by_sha256_of_key(self, disk: DiskTier, directory: Path) -> None:
        disk.set("user:1", {"name": "Ada"})
        assert _entry_path(directory, "user:1").is_file()

    def test_header_holds_expiry_ms_and_payload_length(
        self, disk: DiskTier, directory: Path, clock
    ) -> None:
        written = disk.set("a", "hello", expires_at=clock.now + 60)
        data = _entry_path(directory, "a").read_bytes()
        expiry_ms, length = struct.unpack(">qQ", data[:16])

        assert expiry_ms == int((clock.now + 60) * 1000)
        assert length == written.cost == len(data) - 16
        assert data[16:] == b'"hello"'

    def test_never_is_stored_as_max_int64(self, disk: DiskTier, directory: Path) -> None:
        disk.set("a", 1)
        data = _entry_path(directory, "a").read_bytes()
        assert struct.unpack(">q", data[:8])[0] == NEVER

    def test_no_temp_files_left_behind(self, disk: DiskTier, directory: Path) -> None:
        disk.set("a", 1)
        disk.set("a", 2)
        assert [p.name for p in directory.iterdir()] == [_entry_path(directory, "a").name]


# ---------------------------------------------------------------------------
# Read / write
# ---------------------------------------------------------------------------


class TestReadWrite:
    def test_round_trip(self, disk: DiskTier) -> None:
        disk.set("a", {"nested": [1, 2, {"b": None}]})
        assert disk.get("a") == {"nested": [1, 2, {"b": None}]}

    def test_read_returns_deadline_and_cost(self, disk: DiskTier, clock) -> None:
        written = disk.set("a", [1, 2, 3], expires_at=clock.now + 5)
        entry = disk.read("a")
        assert entry is not None
        assert entry.value == [1, 2, 3]
        assert entry.expires_at == pytest.approx(clock.now + 5)
        assert entry.cost == written.cost

    def test_absent_key(self, disk: DiskTier) -> None:
        assert disk.read("missing") is None
        assert disk.get("missing", "d") == "d"
        assert disk.exists("missing") is False

    def test_overwrite(self, disk: DiskTier) -> None:
        disk.set("a", 1)
        disk.set("a", 2)
        assert disk.get("a") == 2
        assert len(disk) == 1

    def test_remove(self, disk: DiskTier) -> None:
        disk.set("a", 1)
        assert disk.remove("a") is True
        assert disk.remove("a") is False
        assert disk.get("a") is None

    def test_encoding_error_writes_nothing(self, disk: DiskTier, directory: Path) -> None:
        with pytest.raises(EncodingError):
            disk.set("a", object())
        assert not _entry_path(directory, "a").exists()

    def test_write_failure_raises_storage_write_error(self, tmp_path: Path, clock) -> None:
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        disk = DiskTier(blocker / "cache", JsonCodec(), clock=clock)
        with pytest.raises(StorageWriteError):
            disk.set("a", 1)

    def test_failed_replace_keeps_previous_entry(
        self, disk: DiskTier, directory: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        disk.set("a", "old")

        def fail(src: str, dst: Path) -> None:
            raise OSError("disk full")

        monkeypatch.setattr("tiercache.fileio.os.replace", fail)
        with pytest.raises(StorageWriteError, match="disk full"):
            disk.set("a", "new")
        monkeypatch.undo()

        assert disk.get("a") == "old"
        assert [p.name for p in directory.iterdir()] == [_entry_path(directory, "a").name]


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:
    def test_expired_entry_is_absent_and_deleted(
        self, disk: DiskTier, directory: Path, clock
    ) -> None:
        disk.set("a", 1, expires_at=clock.now + 10)
        clock.advance(10)
        assert disk.read("a") is None
        assert not _entry_path(directory, "a").exists()

    def test_exists_honours_expiry(self, disk: DiskTier, clock) -> None:
        disk.set("a", 1, expires_at=clock.now + 10)
        assert disk.exists("a") is True
        clock.advance(11)
        assert disk.exists("a") is False

    def test_past_deadline_is_written_but_never_served(self, disk: DiskTier, clock) -> None:
        disk.set("a", 1, expires_at=clock.now - 5)
        assert disk.get("a") is None

    def test_remove_expired_sweeps_only_expired(self, disk: DiskTier, clock) -> None:
        disk.set("old1", 1, expires_at=clock.now + 1)
        disk.set("old2", 2, expires_at=clock.now + 2)
        disk.set("fresh", 3, expires_at=clock.now + 100)
        disk.set("forever", 4)
        clock.advance(50)

        report = disk.remove_expired()

        assert report.removed == 2
        assert report.failed == 0
        assert report.ok
        assert len(disk) == 2
        assert disk.get("fresh") == 3
        assert disk.get("forever") == 4

    def test_remove_expired_drops_corrupt_headers(self, disk: DiskTier, directory: Path) -> None:
        disk.set("good", 1)
        _entry_path(directory, "bad").write_bytes(b"\x00\x01")
        report = disk.remove_expired()
        assert report.removed == 1
        assert disk.get("good") == 1

    def test_remove_expired_on_missing_directory(self, disk: DiskTier) -> None:
        report = disk.remove_expired()
        assert report.removed == 0
        assert report.failed == 0


# ---------------------------------------------------------------------------
# Corruption
# ---------------------------------------------------------------------------


class TestCorruption:
    def test_truncated_header(self, disk: DiskTier, directory: Path) -> None:
        directory.mkdir(parents=True)
        _entry_path(directory, "a").write_bytes(b"\x00" * 5)
        with pytest.raises(StorageReadError, match="header"):
            disk.read("a")
        with pytest.raises(StorageReadError):
            disk.exists("a")

    def test_truncated_payload(self, disk: DiskTier, directory: Path) -> None:
        directory.mkdir(parents=True)
        _entry_path(directory, "a").write_bytes(struct.pack(">qQ", NEVER, 10) + b'"ab')
        with pytest.raises(StorageReadError, match="truncated"):
            disk.read("a")

    def test_undecodable_payload(self, disk: DiskTier, directory: Path) -> None:
        payload = b"{bad json"
        directory.mkdir(parents=True)
        _entry_path(directory, "a").write_bytes(struct.pack(">qQ", NEVER, len(payload)) + payload)
        with pytest.raises(DecodingError):
            disk.read("a")


# ---------------------------------------------------------------------------
# Size limit
# ---------------------------------------------------------------------------


class TestSizeLimit:
    def _age(self, directory: Path, key: str, mtime: float) -> None:
        os.utime(_entry_path(directory, key), (mtime, mtime))

    def test_oldest_modified_entry_is_evicted(self, directory: Path, clock) -> None:
        # Each entry is 16 header bytes + 12 payload bytes.
        disk = DiskTier(directory, JsonCodec(), max_bytes=60, clock=clock)
        disk.set("a", "aaaaaaaaaa")
        disk.set("b", "bbbbbbbbbb")
        self._age(directory, "a", 1_000)
        self._age(directory, "b", 2_000)

        disk.set("c", "cccccccccc")

        assert disk.get("a") is None
        assert disk.get("b") == "bbbbbbbbbb"
        assert disk.get("c") == "cccccccccc"
        assert disk.total_size() <= 60

    def test_read_refreshes_recency(self, directory: Path, clock) -> None:
        disk = DiskTier(directory, JsonCodec(), max_bytes=60, clock=clock)
        disk.set("a", "aaaaaaaaaa")
        disk.set("b", "bbbbbbbbbb")
        self._age(directory, "a", 1_000)
        self._age(directory, "b", 2_000)

        assert disk.get("a") == "aaaaaaaaaa"
        disk.set("c", "cccccccccc")

        assert disk.exists("a")
        assert not disk.exists("b")

    def test_set_reports_evicted_entries(self, directory: Path, clock) -> None:
        disk = DiskTier(directory, JsonCodec(), max_bytes=60, clock=clock)
        assert disk.set("a", "aaaaaaaaaa").evicted == ()
        disk.set("b", "bbbbbbbbbb")
        self._age(directory, "a", 1_000)
        self._age(directory, "b", 2_000)

        written = disk.set("c", "cccccccccc")

        assert written.evicted == (entry_name("a"),)
        assert written.cost == 12

    def test_unlimited_never_evicts(self, disk: DiskTier) -> None:
        for i in range(5):
            assert disk.set(f"k{i}", "x" * 50).evicted == ()
        assert len(disk) == 5

    def test_new_entry_larger_than_limit_is_kept(self, directory: Path, clock) -> None:
        disk = DiskTier(directory, JsonCodec(), max_bytes=20, clock=clock)
        disk.set("small", 1)
        disk.set("big", "x" * 100)
        assert disk.get("big") == "x" * 100
        assert disk.get("small") is None


# ---------------------------------------------------------------------------
# remove_all
# ---------------------------------------------------------------------------


class TestRemoveAll:
    def test_deletes_entries_and_directory(self, disk: DiskTier, directory: Path) -> None:
        for i in range(3):
            disk.set(f"k{i}", i)
        report = disk.remove_all()
        assert report.removed == 3
        assert not directory.exists()
        assert disk.get("k0") is None

    def test_idempotent(self, disk: DiskTier) -> None:
        disk.set("a", 1)
        disk.remove_all()
        report = disk.remove_all()
        assert report.removed == 0
        assert report.ok

    def test_usable_after_clear(self, disk: DiskTier) -> None:
        disk.set("a", 1)
        disk.remove_all()
        disk.set("b", 2)
        assert disk.get("b") == 2

    def test_failures_are_reported(
        self, disk: DiskTier, directory: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        disk.set("a", 1)
        disk.set("b", 2)

        def deny(self: Path, missing_ok: bool = False) -> None:
            raise PermissionError("denied")

        monkeypatch.setattr(Path, "unlink", deny)
        with pytest.raises(StorageWriteError) as excinfo:
            disk.remove_all()
        monkeypatch.undo()

        assert excinfo.value.report is not None
        assert excinfo.value.report.failed == 2
        assert excinfo.value.report.removed == 0
        assert directory.is_dir()
