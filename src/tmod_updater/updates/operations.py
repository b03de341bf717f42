"""
Filesystem operations used by the upgrade steps.

Each helper performs one filesystem mutation and reports failure as a
FilesystemError carrying the paths involved, so the orchestrator can stop
the pipeline with a precise diagnostic.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from tmod_updater.errors import FilesystemError
from tmod_updater.logging import get_logger

logger = get_logger(__name__)

# Suffix given to files moved aside before redeploy
MOVE_ASIDE_SUFFIX = ".orig"

# rwxr-xr-x
EXECUTABLE_MODE = 0o755


def ensure_directory(path: Path, *, parents: bool = True, mode: int = 0o755) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Path to the directory.
        parents: If True, create parent directories as needed.
        mode: Directory permissions for newly created directories.

    Returns:
        The directory path.

    Raises:
        FilesystemError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=parents, mode=mode, exist_ok=True)
        return path
    except OSError as e:
        raise FilesystemError(
            f"Failed to create directory: {path}",
            details={"path": str(path), "error": str(e)},
        ) from e


def create_directory(path: Path, *, mode: int = 0o777) -> Path:
    """
    Create a directory that must not exist yet.

    Args:
        path: Directory to create. Its parent must exist.
        mode: Permissions before the umask is applied.

    Raises:
        FilesystemError: If the directory exists or cannot be created.
    """
    try:
        path.mkdir(mode=mode)
    except OSError as e:
        raise FilesystemError(
            f"Error creating new directory {path}: {e}",
            details={"path": str(path), "error": str(e)},
        ) from e

    logger.debug("Created directory", extra={"path": str(path)})
    return path


def rename_path(source: Path, destination: Path) -> Path:
    """
    Rename ``source`` to ``destination``, refusing to replace anything.

    Args:
        source: Existing file or directory.
        destination: New name; must not exist.

    Returns:
        The destination path.

    Raises:
        FilesystemError: If the source is missing, the destination exists, or
            the rename fails.
    """
    if os.path.lexists(destination):
        raise FilesystemError(
            f"Cannot rename {source}: {destination} already exists",
            details={"source": str(source), "destination": str(destination)},
        )

    try:
        os.rename(source, destination)
    except OSError as e:
        raise FilesystemError(
            f"Error renaming {source} to {destination}: {e}",
            details={
                "source": str(source),
                "destination": str(destination),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Renamed",
        extra={"source": str(source), "destination": str(destination)},
    )
    return destination


def move_aside(path: Path, *, suffix: str = MOVE_ASIDE_SUFFIX) -> Path:
    """
    Rename ``path`` to ``<path><suffix>`` to preserve it before redeploy.

    An existing ``<path><suffix>`` from an earlier run is replaced, matching
    plain rename semantics.

    Returns:
        The new path.

    Raises:
        FilesystemError: If ``path`` does not exist or cannot be renamed.
    """
    destination = path.with_name(path.name + suffix)
    try:
        os.replace(path, destination)
    except OSError as e:
        raise FilesystemError(
            f"Error moving config file {path}: {e}",
            details={
                "source": str(path),
                "destination": str(destination),
                "error": str(e),
            },
        ) from e

    logger.info(
        "Moved file aside",
        extra={"source": str(path), "destination": str(destination)},
    )
    return destination


def copy_file(source: Path, destination: Path) -> Path:
    """
    Copy the contents of ``source`` to ``destination``.

    Raises:
        FilesystemError: If either file cannot be opened or written.
    """
    try:
        shutil.copyfile(source, destination)
    except OSError as e:
        raise FilesystemError(
            f"Error copying config file {source}: {e}",
            details={
                "source": str(source),
                "destination": str(destination),
                "error": str(e),
            },
        ) from e

    logger.debug(
        "Copied file",
        extra={"source": str(source), "destination": str(destination)},
    )
    return destination


def make_executable(directory: Path, pattern: str = "*.sh") -> list[Path]:
    """
    Set rwxr-xr-x on every file matching ``pattern`` directly in ``directory``.

    Returns:
        The files whose mode was changed, sorted by name.

    Raises:
        FilesystemError: If a chmod fails.
    """
    scripts = sorted(p for p in directory.glob(pattern) if p.is_file())
    for script in scripts:
        try:
            script.chmod(EXECUTABLE_MODE)
        except OSError as e:
            raise FilesystemError(
                f"Error setting execute permission on {script}: {e}",
                details={"path": str(script), "error": str(e)},
            ) from e

    logger.debug(
        "Set execute permission",
        extra={"directory": str(directory), "files": [p.name for p in scripts]},
    )
    return scripts
