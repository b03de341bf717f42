"""
Configuration management for the tModLoader server updater.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults, a stock /root/tModLoader install)
2. YAML config file ($TMOD_UPDATER_CONFIG or /etc/tmod-updater/config.yml)
3. Environment variables (TMOD_UPDATER_* prefix, __ for nesting)

The resulting models are frozen: the configuration is built once at startup
and handed to every collaborator unchanged.
"""

from __future__ import annotations

import os
import string
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from tmod_updater.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("/etc/tmod-updater/config.yml")
DEFAULT_ENV_PREFIX = "TMOD_UPDATER_"

_LOG_LEVELS = ("debug", "info", "warning", "error", "critical")
_LEVEL_ALIASES = {"warn": "warning", "fatal": "critical"}

# =============================================================================
# Version Templates
# =============================================================================


class VersionTemplate(BaseModel):
    """
    A path or URL containing a single ``{version}`` placeholder.

    Templates are validated when the configuration is loaded, so a typo in a
    placeholder fails at startup instead of halfway through an upgrade.
    A bare string is accepted wherever a template is expected.

    Example:
        >>> VersionTemplate.model_validate("/root/tModLoader-v{version}").render("1.4")
        '/root/tModLoader-v1.4'
    """

    model_config = ConfigDict(frozen=True)

    template: str

    @model_validator(mode="before")
    @classmethod
    def coerce_string(cls, data: Any) -> Any:
        """Accept a plain string (or Path) as the template."""
        if isinstance(data, str | Path):
            return {"template": str(data)}
        return data

    @field_validator("template")
    @classmethod
    def validate_placeholder(cls, v: str) -> str:
        """Require exactly one {version} field and nothing else."""
        try:
            fields = [
                field_name
                for _, field_name, _, _ in string.Formatter().parse(v)
                if field_name is not None
            ]
        except ValueError as e:
            raise ValueError(f"Malformed template {v!r}: {e}") from e

        if fields != ["version"]:
            raise ValueError(
                f"Template {v!r} must contain exactly one '{{version}}' placeholder"
            )
        return v

    def render(self, version: str) -> str:
        """Substitute the version into the template."""
        return self.template.format(version=version)

    def path(self, version: str) -> Path:
        """Substitute the version and return the result as a Path."""
        return Path(self.render(version))

    def __str__(self) -> str:
        return self.template


# =============================================================================
# Upgrade Configuration
# =============================================================================


class UpgradeConfig(BaseModel):
    """Filesystem layout and remote endpoints for one server installation.

    Attributes:
        root_dir: Home directory holding the installation and its data.
        base_dir: Live server installation directory.
        data_dir: World/mod data directory, relative to root_dir.
        backup_dir: Directory receiving the tar.gz backups.
        release_url: URL redirecting to the latest tagged release.
        download_url: Template for the distribution zip URL.
        archive_name: Template for the downloaded zip's file name in base_dir.
        log_file: Server log whose first line carries the running version.
        version_file: JSON record of the installed version.
        previous_install_dir: Where the current installation is moved aside to.
        exec_backup_name: Template for the executables backup file name.
        data_backup_name: Template for the data files backup file name.
        copy_files: Templates (rendered with the old version) of files carried
            over into the new installation.
        move_files: Files in the new installation renamed to ``<path>.orig``.
        http_timeout: Network timeout in seconds; None waits indefinitely.
        profile_path: Output file for ``pcheck`` profiling stats.
    """

    model_config = ConfigDict(frozen=True)

    root_dir: Path = Field(
        default=Path("/root"),
        description="Home directory holding the installation and its data",
    )
    base_dir: Path = Field(
        default=Path("/root/tModLoader"),
        description="Live server installation directory",
    )
    data_dir: Path = Field(
        default=Path(".local/share/Terraria"),
        description="World/mod data directory, relative to root_dir",
    )
    backup_dir: Path = Field(
        default=Path("/root/backup"),
        description="Directory receiving the tar.gz backups",
    )
    release_url: str = Field(
        default="https://github.com/tModLoader/tModLoader/releases/latest",
        description="URL redirecting to the latest tagged release",
    )
    download_url: VersionTemplate = Field(
        default=VersionTemplate(
            template="https://github.com/tModLoader/tModLoader/releases/download/v{version}/tModLoader.zip"
        ),
        description="Template for the distribution zip URL",
    )
    archive_name: VersionTemplate = Field(
        default=VersionTemplate(template="tModLoader-v{version}.zip"),
        description="File name of the downloaded zip inside base_dir",
    )
    log_file: Path = Field(
        default=Path("/root/tModLoader/tModLoader-Logs/server.log"),
        description="Server log used as the fallback version source",
    )
    version_file: Path = Field(
        default=Path("/root/tModLoader/version_update.json"),
        description="Persisted installed-version record",
    )
    previous_install_dir: VersionTemplate = Field(
        default=VersionTemplate(template="/root/tModLoader-v{version}"),
        description="Destination of the moved-aside installation",
    )
    exec_backup_name: VersionTemplate = Field(
        default=VersionTemplate(template="tMod-execs-{version}.tar.gz"),
        description="Executables backup file name",
    )
    data_backup_name: VersionTemplate = Field(
        default=VersionTemplate(template="tMod-datafiles-{version}.tar.gz"),
        description="Data files backup file name",
    )
    copy_files: tuple[VersionTemplate, ...] = Field(
        default=(
            VersionTemplate(template="/root/tModLoader-v{version}/boot_start.sh"),
            VersionTemplate(template="/root/tModLoader-v{version}/start.sh"),
            VersionTemplate(template="/root/tModLoader-v{version}/serverconfig.txt"),
        ),
        description="Files carried over from the previous installation",
    )
    move_files: tuple[Path, ...] = Field(
        default=(Path("/root/tModLoader/serverconfig.txt"),),
        description="Files renamed to <path>.orig before the carry-over",
    )
    http_timeout: float | None = Field(
        default=None,
        gt=0,
        description="Network timeout in seconds (None: no timeout)",
    )
    profile_path: Path = Field(
        default=Path("tmod-updater.prof"),
        description="cProfile output for the pcheck command",
    )

    @field_validator("release_url")
    @classmethod
    def validate_release_url(cls, v: str) -> str:
        """Only HTTP(S) release URLs are supported."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"release_url must be an http(s) URL, got {v!r}")
        return v

    @field_validator("copy_files", "move_files", mode="before")
    @classmethod
    def coerce_single_entry(cls, v: Any) -> Any:
        """Allow a single path where a list is expected (e.g. from env vars)."""
        if isinstance(v, str | Path):
            return [v]
        return v

    @property
    def data_path(self) -> Path:
        """Absolute path of the data directory."""
        return self.root_dir / self.data_dir

    def exec_backup_path(self, version: str) -> Path:
        """Backup archive of the installation for the given version."""
        return self.backup_dir / self.exec_backup_name.render(version)

    def data_backup_path(self, version: str) -> Path:
        """Backup archive of the data directory for the given version."""
        return self.backup_dir / self.data_backup_name.render(version)

    def archive_path(self, version: str) -> Path:
        """Download location of the distribution zip for the given version."""
        return self.base_dir / self.archive_name.render(version)


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON records instead of plain text.
        log_path: Optional file receiving a copy of the log records.
    """

    model_config = ConfigDict(frozen=True)

    level: str = Field(
        default="warning",
        description="Minimum level: debug, info, warning, error or critical",
    )
    json_format: bool = Field(
        default=True,
        description="Emit JSON-formatted log records",
    )
    log_path: str | None = Field(
        default=None,
        description="Optional log file path",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Accept standard level names in any case; "warn" means "warning"."""
        level = _LEVEL_ALIASES.get(v.lower(), v.lower())
        if level not in _LOG_LEVELS:
            raise ValueError(
                f"Unknown log level {v!r}, expected one of: {', '.join(_LOG_LEVELS)}"
            )
        return level


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Top-level configuration: one section per concern.

    Attributes:
        upgrade: Installation layout and release endpoints.
        logging: Diagnostics output.
    """

    model_config = ConfigDict(frozen=True)

    upgrade: UpgradeConfig = Field(
        default_factory=UpgradeConfig,
        description="Installation layout and release endpoints",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Diagnostics output",
    )


# =============================================================================
# Configuration Sources
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated with ``override``, merging nested sections."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def _load_yaml_config(config_path: Path) -> Any:
    """
    Parse a YAML file; an empty file yields an empty mapping.

    Raises:
        FileNotFoundError: If the file is missing.
        OSError: If it cannot be read.
        yaml.YAMLError: If it is not valid YAML.
    """
    with config_path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return {} if data is None else data


_TRUE_WORDS = frozenset({"true", "yes", "on"})
_FALSE_WORDS = frozenset({"false", "no", "off"})


def _parse_env_value(value: str) -> Any:
    """
    Convert an environment string to the closest scalar.

    Boolean words, then integers, then floats are recognized; a value
    containing commas becomes a list of converted items; anything else stays
    a string (paths, URLs, templates).
    """
    word = value.lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False

    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue

    if "," in value:
        return [_parse_env_value(item.strip()) for item in value.split(",")]
    return value


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Collect ``<prefix>SECTION__KEY=value`` variables into a nested mapping.

    ``TMOD_UPDATER_UPGRADE__BACKUP_DIR=/srv/backup`` becomes
    ``{"upgrade": {"backup_dir": "/srv/backup"}}``. ``<prefix>CONFIG`` names
    the YAML file and is skipped.
    """
    settings: dict[str, Any] = {}
    for name, raw in os.environ.items():
        if not name.startswith(prefix) or name == f"{prefix}CONFIG":
            continue

        *sections, leaf = name.removeprefix(prefix).lower().split("__")
        node = settings
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = _parse_env_value(raw)

    return settings


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to a YAML configuration file. If None, uses
            ``$<env_prefix>CONFIG`` or the default path when it exists.
        env_prefix: Prefix for environment variables.

    Returns:
        Fully validated, frozen AppConfig instance.

    Raises:
        ConfigurationError: If the file is missing or unreadable, the YAML is
            invalid, or a value fails validation.
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        env_path = os.environ.get(f"{env_prefix}CONFIG")
        if env_path:
            config_path = Path(env_path)
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        try:
            yaml_config = _load_yaml_config(config_path)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot read configuration file {config_path}: {e}",
                details={"path": str(config_path)},
            ) from e
        if not isinstance(yaml_config, dict):
            raise ConfigurationError(
                f"Configuration file {config_path} must contain a mapping",
                details={"path": str(config_path)},
            )
        config_dict = _deep_merge(config_dict, yaml_config)

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    try:
        return AppConfig(**config_dict)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e.error_count()} error(s)",
            details={
                "errors": [
                    {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                    for err in e.errors()
                ]
            },
        ) from e
