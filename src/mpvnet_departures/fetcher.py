from __future__ import annotations

import json
import logging
from typing import Callable, Optional

import requests

from .http import create_session
from .models import Region

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://mpvnet.cz"
DEFAULT_TIMEOUT_SECONDS = 10.0

# StopKey category for public-transport stops
STOP_CATEGORY = 2
STOP_SUB_CATEGORY = 0


def build_payload(stop_id: int) -> dict:
    """Request body for one stop; StopKey is itself a JSON-encoded string."""
    stop_key = {
        "cat": STOP_CATEGORY,
        "subCat": STOP_SUB_CATEGORY,
        "stopNum": stop_id,
        "departures": None,
    }
    return {
        "isDepartures": True,
        "StopKey": json.dumps(stop_key, separators=(",", ":")),
    }


class BoardFetcher:
    """Fetches the raw departure board markup for one stop."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session_factory: Optional[Callable[[Region], requests.Session]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session_factory = session_factory or self._default_session

    def _default_session(self, region: Region) -> requests.Session:
        return create_session(self.base_url, region)

    def board_url(self, region: Region) -> str:
        return f"{self.base_url}/{Region(region).value}/tab/departures"

    def fetch(self, region: Region, stop_id: int) -> Optional[str]:
        """Return board markup, or None when the stop has no data for us.

        Transport errors, non-200 responses and empty bodies all map to None;
        the caller continues with its other stops.
        """
        region = Region(region)
        url = self.board_url(region)
        # session carries the JSON content type and region Origin/Referer
        sess = self._session_factory(region)
        try:
            resp = sess.post(
                url,
                json=build_payload(stop_id),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Board fetch failed for stop %s (%s): %s", stop_id, region.value, e)
            return None
        finally:
            sess.close()

        if resp.status_code != 200:
            logger.warning(
                "Board fetch for stop %s (%s) returned HTTP %s", stop_id, region.value, resp.status_code
            )
            return None
        if not resp.text:
            logger.info("Empty board for stop %s (%s)", stop_id, region.value)
            return None
        return resp.text
