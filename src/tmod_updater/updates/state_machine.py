"""
Upgrade state machine for the tModLoader server updater.

The upgrade is a linear pipeline of named steps:

    idle -> backup_execs -> backup_data -> move_current -> make_new_dir
         -> fetch -> extract -> deploy -> done

Every step state may also move to ``failed``. The first failing step stops
the run: nothing is retried and nothing already done is rolled back, so the
operator can inspect the partial state (backups are taken first for that
reason).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, Field

from tmod_updater.errors import InvalidTransitionError, StepFailedError, UpgradeError
from tmod_updater.logging import get_logger
from tmod_updater.updates.archive import ArchiveService
from tmod_updater.updates.deployer import Deployer
from tmod_updater.updates.fetcher import Fetcher
from tmod_updater.updates.operations import (
    create_directory,
    ensure_directory,
    rename_path,
)
from tmod_updater.updates.release import ReleaseResolver
from tmod_updater.updates.version import VersionStore, parse_release_tag

if TYPE_CHECKING:
    from tmod_updater.config import UpgradeConfig

logger = get_logger(__name__)


class UpgradeState(str, Enum):
    """
    States for the upgrade state machine.

    State transitions:
    - idle -> backup_execs (upgrade started)
    - each step -> next step (step succeeded)
    - each step -> failed (step raised)
    - deploy -> done (upgrade complete)
    """

    IDLE = "idle"
    BACKUP_EXECS = "backup_execs"
    BACKUP_DATA = "backup_data"
    MOVE_CURRENT = "move_current"
    MAKE_NEW_DIR = "make_new_dir"
    FETCH = "fetch"
    EXTRACT = "extract"
    DEPLOY = "deploy"
    DONE = "done"
    FAILED = "failed"


# Pipeline order of the step states
STEP_ORDER: tuple[UpgradeState, ...] = (
    UpgradeState.BACKUP_EXECS,
    UpgradeState.BACKUP_DATA,
    UpgradeState.MOVE_CURRENT,
    UpgradeState.MAKE_NEW_DIR,
    UpgradeState.FETCH,
    UpgradeState.EXTRACT,
    UpgradeState.DEPLOY,
)

# Labels used in the progress report
STEP_LABELS: dict[UpgradeState, str] = {
    UpgradeState.BACKUP_EXECS: "Backup Executables",
    UpgradeState.BACKUP_DATA: "Backup Data Files",
    UpgradeState.MOVE_CURRENT: "Move Current Inst.",
    UpgradeState.MAKE_NEW_DIR: "Prepare Directory",
    UpgradeState.FETCH: "Retrieve File",
    UpgradeState.EXTRACT: "Unzip New Server",
    UpgradeState.DEPLOY: "Deploy Start Files",
}


def _build_transitions() -> dict[UpgradeState, set[UpgradeState]]:
    transitions: dict[UpgradeState, set[UpgradeState]] = {
        UpgradeState.IDLE: {STEP_ORDER[0]},
        UpgradeState.DONE: set(),
        UpgradeState.FAILED: set(),
    }
    for current, following in zip(
        STEP_ORDER, (*STEP_ORDER[1:], UpgradeState.DONE), strict=True
    ):
        transitions[current] = {following, UpgradeState.FAILED}
    return transitions


# Valid state transitions
_VALID_TRANSITIONS: dict[UpgradeState, set[UpgradeState]] = _build_transitions()


class StepStatus(str, Enum):
    """Progress of a single step as reported to callbacks."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class UpgradeRun(BaseModel):
    """
    State of a single updater invocation. Never persisted.

    Attributes:
        installed_version: Version currently installed (updated after deploy).
        latest_version: Latest released version.
        state: Current state machine state.
        completed_steps: Names of the steps that finished, in order.
        failed_step: Name of the step that failed, if any.
        error_message: Message of the error that stopped the run.
        started_at: ISO 8601 timestamp when the first step started.
        finished_at: ISO 8601 timestamp when the run ended.
    """

    installed_version: str = Field(..., description="Installed release tag")
    latest_version: str = Field(..., description="Latest release tag")
    state: UpgradeState = Field(
        default=UpgradeState.IDLE,
        description="Current state machine state",
    )
    completed_steps: list[str] = Field(
        default_factory=list,
        description="Steps completed so far",
    )
    failed_step: str | None = Field(
        default=None,
        description="Step that stopped the run",
    )
    error_message: str | None = Field(
        default=None,
        description="Error that stopped the run",
    )
    started_at: str | None = Field(
        default=None,
        description="ISO 8601 timestamp when the upgrade started",
    )
    finished_at: str | None = Field(
        default=None,
        description="ISO 8601 timestamp when the upgrade ended",
    )

    @property
    def update_available(self) -> bool:
        """True when the latest release differs from the installed one."""
        return self.latest_version != self.installed_version


class StepEvent(BaseModel):
    """Progress notification for one step."""

    step: str
    label: str
    status: StepStatus
    error: str | None = None


@dataclass(frozen=True)
class Step:
    """A named pipeline step wrapping a single collaborator call."""

    state: UpgradeState
    label: str
    action: Callable[[], object]

    @property
    def name(self) -> str:
        return self.state.value


class UpgradeOrchestrator:
    """
    Drives version resolution and the upgrade pipeline.

    Collaborators default to the real implementations built from the
    configuration; tests pass doubles instead.

    Attributes:
        config: Installation layout and endpoints.
        version_store: Installed-version record.
        resolver: Latest-release lookup.
        archiver: Backup and extraction.
        fetcher: Distribution download.
        deployer: Config and startup file redeploy.
    """

    def __init__(
        self,
        config: UpgradeConfig,
        *,
        version_store: VersionStore | None = None,
        resolver: ReleaseResolver | None = None,
        archiver: ArchiveService | None = None,
        fetcher: Fetcher | None = None,
        deployer: Deployer | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize the UpgradeOrchestrator.

        Args:
            config: Installation layout and endpoints.
            version_store: Optional VersionStore override.
            resolver: Optional ReleaseResolver override.
            archiver: Optional ArchiveService override.
            fetcher: Optional Fetcher override.
            deployer: Optional Deployer override.
            transport: Optional httpx transport for the default network
                collaborators.
        """
        self.config = config
        self.version_store = version_store or VersionStore(
            config.version_file, config.log_file
        )
        self.resolver = resolver or ReleaseResolver(
            config.release_url, timeout=config.http_timeout, transport=transport
        )
        self.archiver = archiver or ArchiveService()
        self.fetcher = fetcher or Fetcher(
            timeout=config.http_timeout, transport=transport
        )
        self.deployer = deployer or Deployer(config, self.version_store)
        self._run: UpgradeRun | None = None
        self._progress_callbacks: list[Callable[[StepEvent], None]] = []

    @property
    def run(self) -> UpgradeRun | None:
        """The run being (or last) processed."""
        return self._run

    @property
    def state(self) -> UpgradeState:
        """Current state; idle before any run."""
        if self._run is None:
            return UpgradeState.IDLE
        return self._run.state

    def add_progress_callback(self, callback: Callable[[StepEvent], None]) -> None:
        """Add a callback to be notified when steps start, complete or fail."""
        self._progress_callbacks.append(callback)

    def _notify_progress(self, event: StepEvent) -> None:
        for callback in self._progress_callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _transition_to(self, run: UpgradeRun, new_state: UpgradeState) -> None:
        """
        Move ``run`` to ``new_state``.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        current = run.state

        if new_state not in _VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Invalid state transition from {current.value} to {new_state.value}",
                details={
                    "current_state": current.value,
                    "target_state": new_state.value,
                    "valid_transitions": sorted(
                        s.value for s in _VALID_TRANSITIONS[current]
                    ),
                },
            )

        logger.info(
            f"State transition: {current.value} -> {new_state.value}",
            extra={
                "old_state": current.value,
                "new_state": new_state.value,
                "installed_version": run.installed_version,
                "latest_version": run.latest_version,
            },
        )
        run.state = new_state

    def resolve(self) -> UpgradeRun:
        """
        Determine the latest and installed versions.

        Returns:
            A fresh idle UpgradeRun.

        Raises:
            NetworkError: If the release lookup fails.
            FilesystemError: If the installed version cannot be read.
            ParseError: If either version is empty or malformed.
        """
        latest = parse_release_tag(
            self.resolver.get_latest(), source="latest release tag"
        )
        installed = parse_release_tag(
            self.version_store.get_installed(), source="installed version"
        )

        run = UpgradeRun(installed_version=installed, latest_version=latest)
        logger.info(
            "Versions resolved",
            extra={
                "installed_version": installed,
                "latest_version": latest,
                "update_available": run.update_available,
            },
        )
        self._run = run
        return run

    def check(self) -> UpgradeRun:
        """Resolve versions without touching the installation."""
        return self.resolve()

    def build_steps(self, run: UpgradeRun) -> list[Step]:
        """
        Build the ordered pipeline for ``run``.

        Each step performs exactly one collaborator call (the backup step
        also makes sure the backup directory exists).
        """
        config = self.config
        installed = run.installed_version
        latest = run.latest_version
        archive_path = config.archive_path(latest)

        def backup_execs() -> None:
            ensure_directory(config.backup_dir)
            self.archiver.backup(config.exec_backup_path(installed), config.base_dir)

        def deploy() -> None:
            run.installed_version = self.deployer.deploy_start_files(
                installed, latest
            )

        actions: dict[UpgradeState, Callable[[], object]] = {
            UpgradeState.BACKUP_EXECS: backup_execs,
            UpgradeState.BACKUP_DATA: lambda: self.archiver.backup(
                config.data_backup_path(installed), config.data_path
            ),
            UpgradeState.MOVE_CURRENT: lambda: rename_path(
                config.base_dir, config.previous_install_dir.path(installed)
            ),
            UpgradeState.MAKE_NEW_DIR: lambda: create_directory(config.base_dir),
            UpgradeState.FETCH: lambda: self.fetcher.download(
                archive_path, config.download_url.render(latest)
            ),
            UpgradeState.EXTRACT: lambda: self.archiver.extract(
                archive_path, config.base_dir
            ),
            UpgradeState.DEPLOY: deploy,
        }

        return [Step(state, STEP_LABELS[state], actions[state]) for state in STEP_ORDER]

    def upgrade(self, run: UpgradeRun | None = None) -> UpgradeRun:
        """
        Run the full upgrade if a newer release exists.

        Args:
            run: Previously resolved run; resolved now when omitted.

        Returns:
            The run, in state ``done`` after an upgrade or ``idle`` when no
            update was needed.

        Raises:
            StepFailedError: If a step fails; the run is left in ``failed``.
            InvalidTransitionError: If ``run`` is not idle.
            NetworkError, FilesystemError, ParseError: From version resolution.
        """
        if run is None:
            run = self.resolve()
        self._run = run

        if not run.update_available:
            logger.info(
                "No update available",
                extra={"installed_version": run.installed_version},
            )
            return run

        run.started_at = datetime.now(UTC).isoformat()
        logger.info(
            f"Starting upgrade: {run.installed_version} -> {run.latest_version}"
        )

        for step in self.build_steps(run):
            self._transition_to(run, step.state)
            self._notify_progress(
                StepEvent(step=step.name, label=step.label, status=StepStatus.STARTED)
            )

            try:
                step.action()
            except UpgradeError as e:
                run.failed_step = step.name
                run.error_message = e.message
                run.finished_at = datetime.now(UTC).isoformat()
                self._transition_to(run, UpgradeState.FAILED)
                self._notify_progress(
                    StepEvent(
                        step=step.name,
                        label=step.label,
                        status=StepStatus.FAILED,
                        error=e.message,
                    )
                )
                raise StepFailedError(step.name, step.label, e) from e

            run.completed_steps.append(step.name)
            self._notify_progress(
                StepEvent(
                    step=step.name, label=step.label, status=StepStatus.COMPLETED
                )
            )

        self._transition_to(run, UpgradeState.DONE)
        run.finished_at = datetime.now(UTC).isoformat()
        logger.info(f"Upgrade to {run.latest_version} completed")
        return run
