from __future__ import annotations

import hashlib
import json
import logging
import os
import random
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .models import CacheEntry, DeparturesResult, StopQuery

logger = logging.getLogger(__name__)

CACHE_PREFIX = "mpvnet_"
GC_PROBABILITY = 0.01
RETENTION_SECONDS = 3600  # orphaned entries older than this are swept regardless of expiry


def cache_key(query: StopQuery) -> str:
    """File name for a query: region-scoped digest of its normalized fields."""
    parts = query.cache_key_parts()
    digest = hashlib.sha256(
        json.dumps(parts, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    ).hexdigest()
    return f"{CACHE_PREFIX}{query.region.value}_{digest}.json"


def should_collect(draw: float, probability: float = GC_PROBABILITY) -> bool:
    """GC policy: sweep when a uniform draw in [0, 1) falls under ``probability``."""
    return draw < probability


class CacheStore:
    """TTL-bounded JSON file cache of departure results, one file per query."""

    def __init__(
        self,
        cache_dir: Path,
        retention_seconds: int = RETENTION_SECONDS,
        gc_probability: float = GC_PROBABILITY,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.retention_seconds = retention_seconds
        self.gc_probability = gc_probability
        self._rng = rng or random.Random()
        self._clock = clock

    def path_for(self, query: StopQuery) -> Path:
        return self.cache_dir / cache_key(query)

    def _entries(self):
        if not self.cache_dir.is_dir():
            return []
        return sorted(self.cache_dir.glob(f"{CACHE_PREFIX}*.json"))

    def _read_entry(self, path: Path) -> Optional[CacheEntry]:
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            return CacheEntry.model_validate(raw)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, ValidationError) as e:
            logger.debug("Ignoring unreadable cache entry %s: %s", path.name, e)
            return None

    def get(self, query: StopQuery) -> Optional[DeparturesResult]:
        """Return the cached result for ``query`` or None on a miss.

        Corrupt, partial and expired entries count as misses. On the miss path
        an occasional sweep removes aged-out entries.
        """
        now = int(self._clock())
        entry = self._read_entry(self.path_for(query))
        if entry is None or entry.expires <= now:
            self.maybe_collect_garbage()
            return None

        return DeparturesResult(
            departures=entry.departures,
            cache_max_age=entry.expires - now,
            first_departure_minutes=entry.first_min,
            from_cache=True,
        )

    def set(self, query: StopQuery, result: DeparturesResult) -> None:
        """Persist ``result`` for ``query``, replacing any previous entry atomically."""
        entry = CacheEntry(
            departures=result.departures,
            expires=int(self._clock()) + result.cache_max_age,
            first_min=result.first_departure_minutes,
        )
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(query)
        # Write to a sibling temp file, then rename over the target.
        fd, tmp = tempfile.mkstemp(prefix=f"{CACHE_PREFIX}tmp_", suffix=".json", dir=self.cache_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(entry.model_dump(mode="json"), f, ensure_ascii=False)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def maybe_collect_garbage(self) -> int:
        if not should_collect(self._rng.random(), self.gc_probability):
            return 0
        deleted = self.clean_cache()
        if deleted:
            logger.info("Cache GC removed %d stale entries from %s", deleted, self.cache_dir)
        return deleted

    def clean_cache(self, all: bool = False) -> int:
        """Delete entries older than the retention window, or every entry if ``all``.

        Returns:
            Number of files deleted.
        """
        now = self._clock()
        deleted = 0
        for path in self._entries():
            try:
                if all or now - path.stat().st_mtime > self.retention_seconds:
                    path.unlink()
                    deleted += 1
            except FileNotFoundError:
                # removed concurrently by another sweep
                continue
        return deleted
