"""
Upgrade pipeline for the tModLoader server updater.

This package implements:
- Installed-version tracking (version record + server log fallback)
- Latest-release resolution via the release redirect
- tar.gz backups and zip extraction
- Distribution download
- Start file redeploy
- The state machine sequencing all of the above
"""

from tmod_updater.updates.archive import ArchiveService
from tmod_updater.updates.deployer import Deployer
from tmod_updater.updates.fetcher import Fetcher
from tmod_updater.updates.release import ReleaseResolver, version_from_release_url
from tmod_updater.updates.state_machine import (
    Step,
    StepEvent,
    StepStatus,
    UpgradeOrchestrator,
    UpgradeRun,
    UpgradeState,
)
from tmod_updater.updates.version import (
    VersionRecord,
    VersionStore,
    parse_release_tag,
)

__all__ = [
    # Version tracking
    "VersionStore",
    "VersionRecord",
    "parse_release_tag",
    # Collaborators
    "ReleaseResolver",
    "version_from_release_url",
    "ArchiveService",
    "Fetcher",
    "Deployer",
    # State machine
    "UpgradeOrchestrator",
    "UpgradeRun",
    "UpgradeState",
    "Step",
    "StepEvent",
    "StepStatus",
]
