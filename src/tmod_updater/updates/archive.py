"""
Backup and extraction of server trees.

Backups are gzip-compressed tarballs whose entry names are relative to the
archived directory. Server distributions arrive as zip files.

Neither operation is transactional: a failure leaves a partial archive or a
partially extracted tree behind, and the caller must abort the upgrade.
"""

from __future__ import annotations

import os
import shutil
import tarfile
import zipfile
import zlib
from collections.abc import Iterator
from pathlib import Path

from tmod_updater.errors import ArchiveError, FilesystemError
from tmod_updater.logging import get_logger

logger = get_logger(__name__)


def _raise_walk_error(error: OSError) -> None:
    raise error


def walk_tree(root: Path) -> Iterator[Path]:
    """
    Yield every entry below ``root`` in a stable order.

    Directories are yielded before their contents. Symlinks to directories
    are yielded but not followed.

    Raises:
        OSError: If ``root`` or any directory below it cannot be listed.
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
        dirnames.sort()
        filenames.sort()
        base = Path(dirpath)
        for name in dirnames:
            yield base / name
        for name in filenames:
            yield base / name


class ArchiveService:
    """Creates tar.gz backups and extracts zip distributions."""

    def backup(self, output_archive: Path | str, source_dir: Path | str) -> int:
        """
        Archive ``source_dir`` into a gzip-compressed tarball.

        Entry names are relative to ``source_dir``. Regular files are stored
        with their content, directories as directory entries and anything
        else (symlinks, fifos) as header-only entries. File modes are kept.
        Sockets cannot be represented in a tarball; they are skipped with a
        warning and not counted.

        Args:
            output_archive: Tarball to create (overwritten if it exists).
            source_dir: Directory to archive.

        Returns:
            Number of entries written.

        Raises:
            FilesystemError: If the output file cannot be created.
            ArchiveError: If walking or reading the source tree fails.
        """
        output_archive = Path(output_archive)
        source_dir = Path(source_dir)

        try:
            tar = tarfile.open(output_archive, "w:gz")
        except OSError as e:
            raise FilesystemError(
                f"Cannot create backup {output_archive}: {e}",
                details={"path": str(output_archive), "error": str(e)},
            ) from e

        count = 0
        with tar:
            try:
                for path in walk_tree(source_dir):
                    arcname = path.relative_to(source_dir).as_posix()
                    if tar.gettarinfo(path, arcname) is None:
                        logger.warning(
                            "Skipping unarchivable entry", extra={"path": str(path)}
                        )
                        continue
                    tar.add(path, arcname=arcname, recursive=False)
                    count += 1
            except (OSError, tarfile.TarError) as e:
                raise ArchiveError(
                    f"Error archiving {source_dir}: {e}",
                    details={
                        "source": str(source_dir),
                        "archive": str(output_archive),
                        "error": str(e),
                    },
                ) from e

        logger.info(
            "Backup created",
            extra={
                "source": str(source_dir),
                "archive": str(output_archive),
                "entries": count,
            },
        )
        return count

    def extract(self, archive_path: Path | str, dest_dir: Path | str) -> int:
        """
        Extract a zip archive into ``dest_dir``.

        Intermediate directories are created as needed and Unix execute bits
        stored in the archive are restored. Entries that would land outside
        ``dest_dir`` are rejected.

        Args:
            archive_path: Zip file to read.
            dest_dir: Directory receiving the contents.

        Returns:
            Number of entries extracted.

        Raises:
            ArchiveError: If the zip is malformed, truncated or encrypted, or
                contains an unsafe entry.
            FilesystemError: If the archive cannot be opened or a file cannot
                be written.
        """
        archive_path = Path(archive_path)
        dest_dir = Path(dest_dir)

        try:
            zf = zipfile.ZipFile(archive_path)
        except zipfile.BadZipFile as e:
            raise ArchiveError(
                f"Malformed zip {archive_path}: {e}",
                details={"archive": str(archive_path), "error": str(e)},
            ) from e
        except OSError as e:
            raise FilesystemError(
                f"Cannot open {archive_path}: {e}",
                details={"archive": str(archive_path), "error": str(e)},
            ) from e

        root = dest_dir.resolve()
        count = 0
        with zf:
            for info in zf.infolist():
                target = self._entry_target(root, info.filename, archive_path)
                try:
                    if info.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                    else:
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with zf.open(info) as src, open(target, "wb") as dst:
                            shutil.copyfileobj(src, dst)
                        mode = (info.external_attr >> 16) & 0o777
                        if mode & 0o111:
                            target.chmod(mode)
                except (
                    zipfile.BadZipFile,
                    zlib.error,
                    NotImplementedError,
                    RuntimeError,
                    EOFError,
                ) as e:
                    raise ArchiveError(
                        f"Corrupt entry {info.filename} in {archive_path}: {e}",
                        details={
                            "archive": str(archive_path),
                            "entry": info.filename,
                            "error": str(e),
                        },
                    ) from e
                except OSError as e:
                    raise FilesystemError(
                        f"Cannot extract {info.filename} to {target}: {e}",
                        details={
                            "archive": str(archive_path),
                            "entry": info.filename,
                            "path": str(target),
                            "error": str(e),
                        },
                    ) from e
                count += 1

        logger.info(
            "Archive extracted",
            extra={
                "archive": str(archive_path),
                "destination": str(dest_dir),
                "entries": count,
            },
        )
        return count

    @staticmethod
    def _entry_target(root: Path, name: str, archive_path: Path) -> Path:
        """Resolve an entry name below ``root``, rejecting path traversal."""
        target = (root / name).resolve()
        if not target.is_relative_to(root):
            raise ArchiveError(
                f"Unsafe entry {name!r} in {archive_path}",
                details={"archive": str(archive_path), "entry": name},
            )
        return target
