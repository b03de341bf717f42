"""
Pytest configuration and shared fixtures for the updater tests.

The ``layout`` fixture builds a miniature server installation below
``tmp_path`` and returns an UpgradeConfig pointing at it.
"""

from __future__ import annotations

import io
import zipfile
from collections.abc import Callable
from pathlib import Path

import httpx
import pytest

from tmod_updater.config import UpgradeConfig

INSTALLED_VERSION = "2024.4.3.0"
LATEST_VERSION = "2024.5.3.0"

LOG_FIRST_LINE = (
    "[00:00:00.000] [Main Thread/INFO] [tML]: "
    f"Starting tModLoader v{INSTALLED_VERSION} (+{INSTALLED_VERSION}|stable|Linux)"
)

RELEASE_URL = "https://github.com/tModLoader/tModLoader/releases/latest"
TAG_URL = "https://github.com/tModLoader/tModLoader/releases/tag/v{version}"

DISTRIBUTION_FILES: dict[str, bytes] = {
    "tModLoader.dll": b"new server binary",
    "start.sh": b"#!/bin/sh\necho stock start\n",
    "serverconfig.txt": b"stock config\n",
    "Libraries/": b"",
    "Libraries/Native/libsteam.so": b"\x7fELF native",
}


def build_zip(files: dict[str, bytes]) -> bytes:
    """Build an in-memory zip; names ending in "/" become directory entries."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def release_handler(
    latest: str = LATEST_VERSION,
    archive: bytes | None = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """Request handler imitating GitHub's release redirect and download."""
    payload = build_zip(DISTRIBUTION_FILES) if archive is None else archive

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/releases/latest"):
            return httpx.Response(
                302, headers={"Location": TAG_URL.format(version=latest)}
            )
        if "/releases/tag/" in path:
            return httpx.Response(200, text="release page")
        if path.endswith(f"/download/v{latest}/tModLoader.zip"):
            return httpx.Response(200, content=payload)
        return httpx.Response(404, text="not found")

    return handler


@pytest.fixture
def release_transport() -> httpx.MockTransport:
    """Transport serving LATEST_VERSION and the stock distribution zip."""
    return httpx.MockTransport(release_handler())


@pytest.fixture
def layout(tmp_path: Path) -> UpgradeConfig:
    """Create a server installation at INSTALLED_VERSION below tmp_path."""
    root = tmp_path / "root"
    base = root / "tModLoader"
    logs = base / "tModLoader-Logs"
    logs.mkdir(parents=True)
    (logs / "server.log").write_text(f"{LOG_FIRST_LINE}\nsecond line\n")
    (base / "tModLoader.dll").write_bytes(b"old server binary")
    (base / "start.sh").write_text("#!/bin/sh\necho custom start\n")
    (base / "boot_start.sh").write_text("#!/bin/sh\necho custom boot\n")
    (base / "serverconfig.txt").write_text("maxplayers=16\n")

    worlds = root / ".local" / "share" / "Terraria" / "tModLoader" / "Worlds"
    worlds.mkdir(parents=True)
    (worlds / "World1.wld").write_bytes(b"\x00\x01world data")

    return UpgradeConfig(
        root_dir=root,
        base_dir=base,
        backup_dir=root / "backup",
        log_file=logs / "server.log",
        version_file=base / "version_update.json",
        previous_install_dir=f"{root}/tModLoader-v{{version}}",
        copy_files=[
            f"{root}/tModLoader-v{{version}}/boot_start.sh",
            f"{root}/tModLoader-v{{version}}/start.sh",
            f"{root}/tModLoader-v{{version}}/serverconfig.txt",
        ],
        move_files=[base / "serverconfig.txt"],
        release_url=RELEASE_URL,
        profile_path=tmp_path / "tmod-updater.prof",
    )


def snapshot(root: Path) -> dict[str, bytes | None]:
    """Map every path below root to its content (None for directories)."""
    return {
        str(p.relative_to(root)): (None if p.is_dir() else p.read_bytes())
        for p in sorted(root.rglob("*"))
    }
