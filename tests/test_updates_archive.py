"""
Tests for tar.gz backups and zip extraction.

This test module validates:
- Backup entry names are relative to the archived directory
- Directory structure and file modes survive a backup
- Zip extraction creates intermediate directories and restores exec bits
- Unsafe and malformed archives are rejected
"""

from __future__ import annotations

import socket
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest

from conftest import DISTRIBUTION_FILES, build_zip, snapshot
from tmod_updater.errors import ArchiveError, FilesystemError
from tmod_updater.updates.archive import ArchiveService, walk_tree

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    """Small directory tree with a nested file and an executable script."""
    root = tmp_path / "tree"
    (root / "sub" / "deeper").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "a.txt").write_text("alpha")
    (root / "sub" / "b.bin").write_bytes(b"\x00\x01\x02")
    (root / "sub" / "deeper" / "c.txt").write_text("gamma")
    script = root / "run.sh"
    script.write_text("#!/bin/sh\n")
    script.chmod(0o755)
    return root


# =============================================================================
# Tests for walk_tree
# =============================================================================


class TestWalkTree:
    """Tests for walk_tree ordering."""

    def test_directories_before_contents(self, tree: Path) -> None:
        """Test that each directory precedes its entries."""
        names = [p.relative_to(tree).as_posix() for p in walk_tree(tree)]

        assert set(names) == {
            "empty",
            "sub",
            "a.txt",
            "run.sh",
            "sub/deeper",
            "sub/b.bin",
            "sub/deeper/c.txt",
        }
        assert names.index("sub") < names.index("sub/b.bin")
        assert names.index("sub/deeper") < names.index("sub/deeper/c.txt")

    def test_missing_root(self, tmp_path: Path) -> None:
        """Test that an unreadable root raises OSError."""
        with pytest.raises(OSError):
            list(walk_tree(tmp_path / "missing"))


# =============================================================================
# Tests for ArchiveService.backup
# =============================================================================


class TestBackup:
    """Tests for ArchiveService.backup."""

    def test_relative_entry_names(self, tree: Path, tmp_path: Path) -> None:
        """Test that entries are named relative to the source directory."""
        output = tmp_path / "backup.tar.gz"

        count = ArchiveService().backup(output, tree)

        with tarfile.open(output, "r:gz") as tar:
            names = tar.getnames()
        assert count == 7
        assert sorted(names) == [
            "a.txt",
            "empty",
            "run.sh",
            "sub",
            "sub/b.bin",
            "sub/deeper",
            "sub/deeper/c.txt",
        ]
        assert not any(name.startswith("/") for name in names)

    def test_contents_and_modes_kept(self, tree: Path, tmp_path: Path) -> None:
        """Test that file data, directories and modes are preserved."""
        output = tmp_path / "backup.tar.gz"
        ArchiveService().backup(output, tree)

        with tarfile.open(output, "r:gz") as tar:
            members = {m.name: m for m in tar.getmembers()}
            assert members["empty"].isdir()
            assert members["sub/deeper"].isdir()
            assert stat.S_IMODE(members["run.sh"].mode) == 0o755
            data = tar.extractfile(members["sub/b.bin"])
            assert data is not None
            assert data.read() == b"\x00\x01\x02"

    def test_symlink_stored_as_link(self, tree: Path, tmp_path: Path) -> None:
        """Test that symlinks are archived without their target content."""
        (tree / "link").symlink_to(tree / "a.txt")
        output = tmp_path / "backup.tar.gz"
        ArchiveService().backup(output, tree)

        with tarfile.open(output, "r:gz") as tar:
            assert tar.getmember("link").issym()

    def test_socket_skipped(self, tree: Path, tmp_path: Path) -> None:
        """Test that a Unix socket is left out and not counted."""
        plain = ArchiveService().backup(tmp_path / "plain.tar.gz", tree)
        output = tmp_path / "backup.tar.gz"
        with socket.socket(socket.AF_UNIX) as sock:
            sock.bind(str(tree / "srv.sock"))
            count = ArchiveService().backup(output, tree)

        assert count == plain
        with tarfile.open(output, "r:gz") as tar:
            assert "srv.sock" not in tar.getnames()

    def test_overwrites_existing_archive(self, tree: Path, tmp_path: Path) -> None:
        """Test that an existing backup file is replaced."""
        output = tmp_path / "backup.tar.gz"
        output.write_bytes(b"garbage")

        ArchiveService().backup(output, tree)

        with tarfile.open(output, "r:gz") as tar:
            assert "a.txt" in tar.getnames()

    def test_missing_source(self, tmp_path: Path) -> None:
        """Test that a missing source directory raises ArchiveError."""
        with pytest.raises(ArchiveError):
            ArchiveService().backup(tmp_path / "out.tar.gz", tmp_path / "missing")

    def test_output_not_creatable(self, tree: Path, tmp_path: Path) -> None:
        """Test that an unwritable output path raises FilesystemError."""
        with pytest.raises(FilesystemError):
            ArchiveService().backup(tmp_path / "missing" / "out.tar.gz", tree)


# =============================================================================
# Tests for ArchiveService.extract
# =============================================================================


class TestExtract:
    """Tests for ArchiveService.extract."""

    def test_extracts_files_and_directories(self, tmp_path: Path) -> None:
        """Test that every entry is created below the destination."""
        archive = tmp_path / "server.zip"
        archive.write_bytes(build_zip(DISTRIBUTION_FILES))
        dest = tmp_path / "dest"
        dest.mkdir()

        count = ArchiveService().extract(archive, dest)

        assert count == len(DISTRIBUTION_FILES)
        assert (dest / "tModLoader.dll").read_bytes() == b"new server binary"
        assert (dest / "Libraries").is_dir()
        assert (dest / "Libraries" / "Native" / "libsteam.so").read_bytes() == (
            b"\x7fELF native"
        )

    def test_missing_intermediate_directories_created(self, tmp_path: Path) -> None:
        """Test that files without directory entries still extract."""
        archive = tmp_path / "server.zip"
        archive.write_bytes(build_zip({"a/b/c/file.txt": b"deep"}))

        ArchiveService().extract(archive, tmp_path)

        assert (tmp_path / "a" / "b" / "c" / "file.txt").read_bytes() == b"deep"

    def test_exec_bits_restored(self, tmp_path: Path) -> None:
        """Test that Unix execute permissions stored in the zip are applied."""
        archive = tmp_path / "server.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            info = zipfile.ZipInfo("start.sh")
            info.external_attr = (stat.S_IFREG | 0o755) << 16
            zf.writestr(info, "#!/bin/sh\n")
            zf.writestr("readme.txt", "hi")
        dest = tmp_path / "dest"
        dest.mkdir()

        ArchiveService().extract(archive, dest)

        assert stat.S_IMODE((dest / "start.sh").stat().st_mode) == 0o755
        assert not (dest / "readme.txt").stat().st_mode & 0o111

    @pytest.mark.parametrize("name", ["../escape.txt", "sub/../../escape.txt"])
    def test_rejects_path_traversal(self, tmp_path: Path, name: str) -> None:
        """Test that entries outside the destination are rejected."""
        archive = tmp_path / "evil.zip"
        archive.write_bytes(build_zip({name: b"pwned"}))
        dest = tmp_path / "dest"
        dest.mkdir()

        with pytest.raises(ArchiveError):
            ArchiveService().extract(archive, dest)
        assert not (tmp_path / "escape.txt").exists()

    def test_rejects_malformed_zip(self, tmp_path: Path) -> None:
        """Test that a non-zip file raises ArchiveError."""
        archive = tmp_path / "server.zip"
        archive.write_bytes(b"<html>not a zip</html>")

        with pytest.raises(ArchiveError):
            ArchiveService().extract(archive, tmp_path)

    def test_rejects_encrypted_entry(self, tmp_path: Path) -> None:
        """Test that an entry flagged as encrypted raises ArchiveError."""
        data = bytearray(build_zip({"start.sh": b"#!/bin/sh\n"}))
        # Bit 0 of the general purpose flags marks an encrypted entry
        data[data.find(b"PK\x03\x04") + 6] |= 0x1
        data[data.find(b"PK\x01\x02") + 8] |= 0x1
        archive = tmp_path / "server.zip"
        archive.write_bytes(bytes(data))
        dest = tmp_path / "dest"
        dest.mkdir()

        with pytest.raises(ArchiveError) as exc_info:
            ArchiveService().extract(archive, dest)

        assert exc_info.value.details["entry"] == "start.sh"
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_missing_archive(self, tmp_path: Path) -> None:
        """Test that a missing archive raises FilesystemError."""
        with pytest.raises(FilesystemError):
            ArchiveService().extract(tmp_path / "missing.zip", tmp_path)


class TestBackupRestore:
    """Backing up a tree and unpacking the tarball reproduces it."""

    def test_tree_reproduced(self, tree: Path, tmp_path: Path) -> None:
        """Test that extraction of a backup yields the same files."""
        output = tmp_path / "backup.tar.gz"
        ArchiveService().backup(output, tree)
        restored = tmp_path / "restored"

        with tarfile.open(output, "r:gz") as tar:
            tar.extractall(restored, filter="tar")

        for path in walk_tree(tree):
            twin = restored / path.relative_to(tree)
            assert twin.is_dir() == path.is_dir()
            if path.is_file():
                assert twin.read_bytes() == path.read_bytes()
        assert stat.S_IMODE((restored / "run.sh").stat().st_mode) == 0o755

    def test_tree_reproduced_through_extract(
        self, tree: Path, tmp_path: Path
    ) -> None:
        """Test that the backup repacked as a zip extracts to the same tree."""
        output = tmp_path / "backup.tar.gz"
        ArchiveService().backup(output, tree)
        repacked = tmp_path / "repacked.zip"

        with tarfile.open(output, "r:gz") as tar, zipfile.ZipFile(
            repacked, "w", compression=zipfile.ZIP_DEFLATED
        ) as zf:
            for member in tar.getmembers():
                if member.isdir():
                    info = zipfile.ZipInfo(member.name + "/")
                    info.external_attr = (stat.S_IFDIR | member.mode) << 16
                    zf.writestr(info, b"")
                else:
                    info = zipfile.ZipInfo(member.name)
                    info.external_attr = (stat.S_IFREG | member.mode) << 16
                    zf.writestr(info, tar.extractfile(member).read())

        restored = tmp_path / "restored"
        restored.mkdir()
        ArchiveService().extract(repacked, restored)

        assert snapshot(restored) == snapshot(tree)
        assert stat.S_IMODE((restored / "run.sh").stat().st_mode) == 0o755
