"""
Redeployment of configuration and startup files into a fresh installation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tmod_updater.logging import get_logger
from tmod_updater.updates.operations import copy_file, make_executable, move_aside

if TYPE_CHECKING:
    from tmod_updater.config import UpgradeConfig
    from tmod_updater.updates.version import VersionStore

logger = get_logger(__name__)


class Deployer:
    """
    Carries the operator's files over from the previous installation.

    Attributes:
        config: Installation layout.
        version_store: Store receiving the new installed version.
    """

    def __init__(self, config: UpgradeConfig, version_store: VersionStore) -> None:
        self.config = config
        self.version_store = version_store

    def deploy_start_files(self, installed_version: str, new_version: str) -> str:
        """
        Redeploy config and startup files and record the new version.

        1. Files in ``move_files`` (shipped by the new distribution) are
           renamed to ``<path>.orig``.
        2. Files in ``copy_files``, rendered with ``installed_version``, are
           copied from the previous installation into ``base_dir``.
        3. ``*.sh`` files in ``base_dir`` are made executable.
        4. ``new_version`` is persisted.

        Args:
            installed_version: Version of the installation that was moved aside.
            new_version: Version just extracted into ``base_dir``.

        Returns:
            The new installed version.

        Raises:
            FilesystemError: If a rename, copy or chmod fails, or the version
                record cannot be written.
        """
        base_dir = self.config.base_dir

        for path in self.config.move_files:
            move_aside(path)

        for template in self.config.copy_files:
            source = template.path(installed_version)
            copy_file(source, base_dir / source.name)

        scripts = make_executable(base_dir)

        self.version_store.write(new_version)

        logger.info(
            "Start files deployed",
            extra={
                "base_dir": str(base_dir),
                "moved": [str(p) for p in self.config.move_files],
                "copied": [t.render(installed_version) for t in self.config.copy_files],
                "scripts": [p.name for p in scripts],
                "version": new_version,
            },
        )
        return new_version
