"""
Shared HTTP client construction for release resolution and downloads.
"""

from __future__ import annotations

import httpx

from tmod_updater import __version__

USER_AGENT = f"tmod-updater/{__version__}"


def build_http_client(
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """
    Create a synchronous client that follows redirects.

    Args:
        timeout: Timeout in seconds for every network phase; None disables it.
        transport: Optional transport, e.g. ``httpx.MockTransport`` in tests.

    Returns:
        An httpx.Client, to be used as a context manager.
    """
    return httpx.Client(
        follow_redirects=True,
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )
