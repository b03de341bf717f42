"""
Error types for the tModLoader server updater.

Every failure inside the upgrade pipeline is expressed as an UpgradeError
subclass. Components never terminate the process themselves; errors propagate
up to the CLI entry point, which maps them to an exit status and a one-line
diagnostic.
"""

from __future__ import annotations

from typing import Any, ClassVar


class UpgradeError(Exception):
    """
    Base exception class for updater errors.

    Attributes:
        error_code: Internal error code string (e.g., "network", "filesystem",
            "parse", "archive").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, URLs, versions).

    Example:
        >>> raise UpgradeError(
        ...     error_code="filesystem",
        ...     message="Failed to rename /root/tModLoader",
        ...     details={"path": "/root/tModLoader"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpgradeError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for logging.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class _CategoryError(UpgradeError):
    """UpgradeError whose code is fixed by the subclass."""

    code: ClassVar[str]

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(self.code, message, details)


class NetworkError(_CategoryError):
    """Resolving the latest release or downloading it failed."""

    code = "network"


class FilesystemError(_CategoryError):
    """An open, create, rename, copy, chmod or mkdir call failed."""

    code = "filesystem"


class ParseError(_CategoryError):
    """
    Malformed input that cannot be recovered without an operator.

    Covers a server log whose first line lacks the "+<version>|" marker and
    release tags that are empty or not in dotted numeric form.
    """

    code = "parse"


class ArchiveError(_CategoryError):
    """Malformed zip, unsafe zip entry, or a failure walking a backup tree."""

    code = "archive"


class ConfigurationError(_CategoryError):
    """The configuration file is missing, unreadable or invalid."""

    code = "configuration"


class InvalidTransitionError(_CategoryError):
    """The upgrade state machine was driven out of order."""

    code = "invalid_transition"


class UsageError(_CategoryError):
    """The command line could not be parsed."""

    code = "usage"


class StepFailedError(UpgradeError):
    """
    Raised by the orchestrator when one pipeline step fails.

    The message is the cause's message; the original error is also chained
    as ``__cause__``.

    Attributes:
        step: State name of the failed step (e.g., "fetch").
        label: Report label of the step (e.g., "Retrieve File").
        cause: The UpgradeError raised by the collaborator.
    """

    def __init__(self, step: str, label: str, cause: UpgradeError) -> None:
        super().__init__(
            "step_failed",
            cause.message,
            {"step": step, "label": label, "cause": cause.to_dict()},
        )
        self.step = step
        self.label = label
        self.cause = cause
