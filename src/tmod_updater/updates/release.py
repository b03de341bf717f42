"""
Latest-release resolution.

GitHub answers ``.../releases/latest`` with a redirect to
``.../releases/tag/v<version>``; the version is read from the final URL, so no
API token or JSON endpoint is needed.
"""

from __future__ import annotations

import httpx

from tmod_updater.errors import NetworkError
from tmod_updater.logging import get_logger
from tmod_updater.updates.client import build_http_client
from tmod_updater.updates.version import parse_release_tag

logger = get_logger(__name__)


def version_from_release_url(url: str) -> str:
    """
    Extract the release tag from a resolved release URL.

    Args:
        url: Final URL, e.g. ``https://host/owner/repo/releases/tag/v1.4.4.9``.

    Returns:
        The last path segment with leading "v" characters removed.

    Raises:
        ParseError: If the segment is empty or not a release tag.
    """
    path = httpx.URL(url).path.rstrip("/")
    segment = path.rsplit("/", 1)[-1]
    return parse_release_tag(segment.lstrip("v"), source="latest release tag")


class ReleaseResolver:
    """
    Resolves the latest available release.

    Attributes:
        release_url: URL that redirects to the latest tagged release.
    """

    def __init__(
        self,
        release_url: str,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize the ReleaseResolver.

        Args:
            release_url: URL that redirects to the latest tagged release.
            timeout: Optional network timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self.release_url = release_url
        self._timeout = timeout
        self._transport = transport

    def get_latest(self) -> str:
        """
        Follow the release redirect and return the latest version.

        Returns:
            The latest release tag (e.g., "2024.5.3.0").

        Raises:
            NetworkError: If the request fails or ends in an error status.
            ParseError: If the final URL does not end in a release tag.
        """
        logger.debug("Resolving latest release", extra={"url": self.release_url})

        try:
            with build_http_client(self._timeout, self._transport) as client:
                response = client.get(self.release_url)
                response.raise_for_status()
                final_url = str(response.url)
        except httpx.HTTPError as e:
            raise NetworkError(
                f"Error fetching latest version: {e}",
                details={"url": self.release_url, "error": str(e)},
            ) from e

        version = version_from_release_url(final_url)
        logger.info(
            "Resolved latest release",
            extra={"url": final_url, "version": version},
        )
        return version
