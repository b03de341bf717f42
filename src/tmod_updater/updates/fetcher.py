"""
Download of the server distribution.
"""

from __future__ import annotations

from pathlib import Path

import httpx

from tmod_updater.errors import FilesystemError, NetworkError
from tmod_updater.logging import get_logger
from tmod_updater.updates.client import build_http_client

logger = get_logger(__name__)

# Chunk size for streaming downloads
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class Fetcher:
    """Streams a URL to a local file."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """
        Initialize the Fetcher.

        Args:
            timeout: Optional network timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._timeout = timeout
        self._transport = transport

    def download(self, dest_path: Path | str, url: str) -> int:
        """
        Download ``url`` to ``dest_path``.

        The destination file is created before the request is made. On
        failure it may be left behind partially written.

        Args:
            dest_path: File to create (overwritten if it exists).
            url: URL to fetch; redirects are followed.

        Returns:
            Number of bytes written.

        Raises:
            FilesystemError: If the destination cannot be created or written.
            NetworkError: If the request fails or returns an error status.
        """
        dest_path = Path(dest_path)
        logger.info(
            "Downloading",
            extra={"url": url, "path": str(dest_path)},
        )

        try:
            output = open(dest_path, "wb")
        except OSError as e:
            raise FilesystemError(
                f"Cannot create {dest_path}: {e}",
                details={"path": str(dest_path), "error": str(e)},
            ) from e

        written = 0
        with output:
            try:
                with (
                    build_http_client(self._timeout, self._transport) as client,
                    client.stream("GET", url) as response,
                ):
                    response.raise_for_status()
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        output.write(chunk)
                        written += len(chunk)
            except httpx.HTTPError as e:
                raise NetworkError(
                    f"Error downloading {url}: {e}",
                    details={"url": url, "path": str(dest_path), "error": str(e)},
                ) from e
            except OSError as e:
                raise FilesystemError(
                    f"Cannot write {dest_path}: {e}",
                    details={"path": str(dest_path), "error": str(e)},
                ) from e

        logger.info(
            "Download complete",
            extra={"url": url, "path": str(dest_path), "bytes": written},
        )
        return written
