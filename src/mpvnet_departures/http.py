from __future__ import annotations

from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import __version__
from .models import Region


def board_headers(base_url: str, region: Optional[Region] = None) -> dict:
    """Headers the board endpoint expects: a JSON body posted from the region page."""
    base_url = base_url.rstrip("/")
    headers = {
        "Content-Type": "application/json",
        "Accept": "*/*",
        "Origin": base_url,
    }
    if region is not None:
        headers["Referer"] = f"{base_url}/{Region(region).value}/"
    return headers


def create_session(
    base_url: str,
    region: Optional[Region] = None,
    user_agent: str | None = None,
    total_retries: int = 0,
    backoff_factor: float = 0.5,
    status_forcelist: tuple[int, ...] = (429, 500, 502, 503, 504),
) -> requests.Session:
    """Create a requests session that talks to one region's departure board.

    Args:
        base_url: Site root, e.g. "https://mpvnet.cz".
        region: Region whose public page is sent as Referer.
        user_agent: Custom User-Agent header value.
        total_retries: Retry attempts for transient errors; 0 disables retrying.
        backoff_factor: Exponential backoff factor in seconds.
        status_forcelist: HTTP status codes to trigger retries (POST included).

    Returns:
        Configured requests Session.
    """
    session = requests.Session()
    if total_retries > 0:
        retry = Retry(
            total=total_retries,
            read=total_retries,
            connect=total_retries,
            backoff_factor=backoff_factor,
            status_forcelist=status_forcelist,
            allowed_methods={"POST"},
            raise_on_status=False,
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

    session.headers.update(board_headers(base_url, region))
    session.headers["User-Agent"] = user_agent or f"MpvnetDepartures/{__version__}"
    return session
