"""
Installed-version tracking for the tModLoader server updater.

The installed release tag is kept in a small JSON record
(``{"version": "<tag>"}``). When the record does not exist yet, the tag is
recovered from the first line of the server log, which tModLoader writes as
``... +<version>|<branch>|...``, and the record is backfilled.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from tmod_updater.errors import FilesystemError, ParseError
from tmod_updater.logging import get_logger

logger = get_logger(__name__)

# Release tags: dotted numbers with an optional "-suffix", e.g. 1.4.4.9,
# 2024.05.3.0, 2024.06.1.2-preview
RELEASE_TAG_PATTERN = re.compile(r"^\d+(?:\.\d+)*(?:-[0-9A-Za-z][0-9A-Za-z.\-]*)?$")


def is_release_tag(tag: str) -> bool:
    """Return True if ``tag`` looks like a release tag."""
    return bool(tag) and RELEASE_TAG_PATTERN.match(tag) is not None


def parse_release_tag(tag: str, *, source: str = "release tag") -> str:
    """
    Validate a release tag.

    Args:
        tag: Candidate tag, without any leading "v".
        source: Where the tag came from, used in the error message.

    Returns:
        The tag, stripped of surrounding whitespace.

    Raises:
        ParseError: If the tag is empty or malformed.
    """
    tag = tag.strip()
    if not tag:
        raise ParseError(
            f"Empty {source}",
            details={"source": source},
        )
    if not is_release_tag(tag):
        raise ParseError(
            f"Invalid {source}: {tag!r}",
            details={"source": source, "version": tag, "example": "1.4.4.9"},
        )
    return tag


class VersionRecord(BaseModel):
    """
    The persisted installed-version document.

    Attributes:
        version: Release tag of the installed server.
    """

    version: str = Field(
        ...,
        description="Release tag of the installed server",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Reject empty or malformed tags."""
        if not is_release_tag(v):
            raise ValueError(f"Invalid release tag: {v!r}")
        return v


class VersionStore:
    """
    Reads and writes the installed-version record.

    Attributes:
        version_file: Path to the JSON record.
        log_file: Server log used when the record is missing.
    """

    def __init__(self, version_file: Path | str, log_file: Path | str) -> None:
        """
        Initialize the VersionStore.

        Args:
            version_file: Path to the JSON version record.
            log_file: Path to the server log (fallback version source).
        """
        self.version_file = Path(version_file)
        self.log_file = Path(log_file)

    def read_installed(self) -> str | None:
        """
        Read the version from the record.

        A missing, unreadable or malformed record is not an error: it simply
        means the version has to be determined another way.

        Returns:
            The recorded release tag, or None if no usable record exists.
        """
        try:
            with open(self.version_file, encoding="utf-8") as f:
                data = json.load(f)
            record = VersionRecord.model_validate(data)
        except FileNotFoundError:
            logger.info(
                "Version record not found",
                extra={"path": str(self.version_file)},
            )
            return None
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(
                "Version record unreadable, ignoring it",
                extra={"path": str(self.version_file), "error": str(e)},
            )
            return None

        logger.debug(
            "Loaded version record",
            extra={"path": str(self.version_file), "version": record.version},
        )
        return record.version

    def read_from_log(self) -> str:
        """
        Extract the running version from the first line of the server log.

        Returns:
            The release tag found between "+" and the next "|".

        Raises:
            FilesystemError: If the log cannot be opened or read.
            ParseError: If the first line does not carry a "+<version>|" marker.
        """
        try:
            with open(self.log_file, encoding="utf-8", errors="replace") as f:
                first_line = f.readline().rstrip("\r\n")
        except OSError as e:
            raise FilesystemError(
                f"Cannot read server log {self.log_file}: {e}",
                details={"path": str(self.log_file), "error": str(e)},
            ) from e

        _, plus, rest = first_line.partition("+")
        version, bar, _ = rest.partition("|")
        if not plus or not bar:
            raise ParseError(
                "First line of the server log has no '+<version>|' marker",
                details={"path": str(self.log_file), "line": first_line[:200]},
            )

        version = parse_release_tag(version, source="version in server log")
        logger.info(
            "Read installed version from server log",
            extra={"path": str(self.log_file), "version": version},
        )
        return version

    def write(self, version: str) -> None:
        """
        Persist the installed version.

        The record is written to a temporary file and renamed into place.

        Args:
            version: Release tag to record.

        Raises:
            ParseError: If the version is not a release tag.
            FilesystemError: If the record cannot be written.
        """
        try:
            record = VersionRecord(version=version)
        except ValidationError as e:
            raise ParseError(
                f"Refusing to record invalid version {version!r}",
                details={"version": version},
            ) from e

        temp_path = self.version_file.with_suffix(".tmp")
        try:
            self.version_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(record.model_dump(), f)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            temp_path.replace(self.version_file)
        except OSError as e:
            raise FilesystemError(
                f"Cannot write version record {self.version_file}: {e}",
                details={"path": str(self.version_file), "error": str(e)},
            ) from e

        logger.info(
            "Saved version record",
            extra={"path": str(self.version_file), "version": version},
        )

    def get_installed(self) -> str:
        """
        Return the installed version, backfilling the record if needed.

        Returns:
            The installed release tag.

        Raises:
            FilesystemError: If the log must be consulted and cannot be read,
                or the record cannot be written.
            ParseError: If the log line is malformed.
        """
        version = self.read_installed()
        if version is None:
            version = self.read_from_log()
            self.write(version)
        return version
