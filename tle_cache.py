"""TLE cache management for constellation groups.

Fetches TLE catalogs from CelesTrak and caches the raw text locally, one
JSON record per group.  A record younger than CACHE_MAX_AGE is served
without touching the network.  When a refresh fails (timeout, HTTP error,
empty body) the previous record is served unchanged as a degraded fallback;
only when no record exists at all does the request fail.

Parsed element sets are capped at MAX_ELEMENT_SETS in catalog order.  The
cap bounds per-request propagation cost and response latency; it is not a
correctness limit.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from pathlib import Path
from typing import Callable

import requests

logger = logging.getLogger(__name__)

CELESTRAK_URL = os.environ.get(
    "CELESTRAK_URL", "https://celestrak.org/NORAD/elements/gp.php"
)
CACHE_DIR = Path(os.environ.get("TLE_CACHE_DIR", Path(__file__).parent / ".tle_cache"))
CACHE_MAX_AGE = timedelta(hours=2)
FETCH_TIMEOUT_S = 10
MAX_ELEMENT_SETS = 30
TLE_EPOCH_WARN_DAYS = 2
USER_AGENT = "constellation-coverage/1.0 (educational use)"

# Constellation id -> CelesTrak group name
GROUPS: dict[str, str] = {
    "iridium": "iridium",
    "starlink": "starlink",
    "kuiper": "kuiper",
}


class UnknownConstellation(ValueError):
    """Constellation id is not one of GROUPS."""


class UpstreamFetchFailure(RuntimeError):
    """Catalog download timed out, returned non-2xx, or had an empty body."""


class NoCacheAvailable(RuntimeError):
    """Catalog download failed and there is no cached copy to fall back on."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_group(constellation: str) -> str:
    """Map a constellation id to its catalog group, or raise UnknownConstellation."""
    try:
        return GROUPS[constellation]
    except KeyError:
        raise UnknownConstellation(
            f"Unknown constellation: {constellation!r} "
            f"(expected one of {', '.join(sorted(GROUPS))})"
        ) from None


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OrbitalElementSet:
    """One catalog entry: name line plus the two element lines."""

    norad_id: int
    name: str
    line1: str
    line2: str

    @property
    def epoch(self) -> datetime:
        # TLE line 1 epoch occupies columns 19–32 (1-indexed) = indices 18:32
        # Format: YYddd.dddddddd  (2-digit year + day-of-year with decimal)
        year_2d = int(self.line1[18:20])
        day_frac = float(self.line1[20:32])
        year = (2000 + year_2d) if year_2d < 57 else (1900 + year_2d)
        return datetime(year, 1, 1, tzinfo=timezone.utc) + timedelta(days=day_frac - 1.0)

    def epoch_age_days(self, now: datetime) -> float:
        """Days elapsed between the element-set epoch and ``now``."""
        return (now - self.epoch).total_seconds() / 86400.0


@dataclass(frozen=True)
class CacheEntry:
    group: str
    text: str
    fetched_at: datetime


# ---------------------------------------------------------------------------
# Parse
# ---------------------------------------------------------------------------

def parse_element_sets(
    text: str, limit: int | None = MAX_ELEMENT_SETS
) -> list[OrbitalElementSet]:
    """Parse raw 3-line TLE text into element sets, in catalog order.

    A window of three lines is accepted only when the second starts with
    "1 " and the third with "2 ", and the catalog number in line 1 columns
    3–7 is an integer.  Rejected windows are skipped one line at a time so
    parsing resynchronises on the next valid entry; a window accepted right
    after a rejection must also carry the same catalog number on both
    element lines, so lines of neighbouring entries are never paired.  At
    most ``limit`` entries are returned (None = no cap).
    """
    lines = [l.strip() for l in text.splitlines() if l.strip()]
    records: list[OrbitalElementSet] = []
    i = 0
    resyncing = False
    while i + 2 < len(lines):
        if limit is not None and len(records) >= limit:
            break
        name, line1, line2 = lines[i], lines[i + 1], lines[i + 2]
        paired = line1.startswith("1 ") and line2.startswith("2 ")
        if paired and resyncing:
            paired = line2[2:7] == line1[2:7]
        if paired:
            try:
                norad_id = int(line1[2:7])
            except ValueError:
                paired = False
        if paired:
            records.append(OrbitalElementSet(norad_id, name, line1, line2))
            resyncing = False
            i += 3
        else:
            resyncing = True
            i += 1
    return records


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

def fetch_catalog(group: str, timeout: float = FETCH_TIMEOUT_S) -> str:
    """Download the raw TLE text for a CelesTrak group.

    Every failure mode is reported as UpstreamFetchFailure.
    """
    try:
        resp = requests.get(
            CELESTRAK_URL,
            params={"GROUP": group.upper(), "FORMAT": "TLE"},
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise UpstreamFetchFailure(f"Failed to fetch {group} TLEs: {exc}") from exc

    if not resp.text or not resp.text.strip():
        raise UpstreamFetchFailure(f"Empty TLE response for {group}")
    return resp.text


# ---------------------------------------------------------------------------
# Cache I/O
# ---------------------------------------------------------------------------

class CacheStore:
    """File-backed store holding one catalog record per group.

    Each record is ``<directory>/<group>.json`` with the raw text and the
    UTC fetch time.  Unreadable records are treated as missing.
    """

    def __init__(self, directory: Path | str = CACHE_DIR):
        self.directory = Path(directory)

    def _path(self, group: str) -> Path:
        return self.directory / f"{group}.json"

    def get(self, group: str) -> CacheEntry | None:
        path = self._path(group)
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
            fetched_at = datetime.fromisoformat(data["fetch_time"])
            if fetched_at.tzinfo is None:
                fetched_at = fetched_at.replace(tzinfo=timezone.utc)
            return CacheEntry(group=group, text=data["text"], fetched_at=fetched_at)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring unreadable cache record %s: %s", path, exc)
            return None

    def put(self, group: str, text: str, fetched_at: datetime) -> CacheEntry:
        """Persist ``text`` as the group's record, replacing any previous one."""
        self.directory.mkdir(parents=True, exist_ok=True)
        payload = {"group": group, "fetch_time": fetched_at.isoformat(), "text": text}
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{group}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh)
            os.replace(tmp, self._path(group))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return CacheEntry(group=group, text=text, fetched_at=fetched_at)

    def age_of(self, group: str, now: datetime) -> timedelta | None:
        entry = self.get(group)
        if entry is None:
            return None
        return now - entry.fetched_at


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class TLECache:
    """Resolve a fresh-enough element-set list for a group.

    store      : persisted records (CacheStore)
    fetch      : callable(group) -> raw text, raising UpstreamFetchFailure
    clock      : callable() -> aware UTC datetime
    """

    def __init__(
        self,
        store: CacheStore | None = None,
        fetch: Callable[[str], str] = fetch_catalog,
        clock: Callable[[], datetime] = utc_now,
        max_age: timedelta = CACHE_MAX_AGE,
        limit: int | None = MAX_ELEMENT_SETS,
    ):
        self.store = store if store is not None else CacheStore()
        self.fetch = fetch
        self.clock = clock
        self.max_age = max_age
        self.limit = limit
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, group: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(group, threading.Lock())

    def get_element_sets(
        self, group: str, force_refresh: bool = False
    ) -> list[OrbitalElementSet]:
        """Return up to ``limit`` parsed element sets for ``group``."""
        entry = self.get_entry(group, force_refresh=force_refresh)
        return parse_element_sets(entry.text, self.limit)

    def get_entry(self, group: str, force_refresh: bool = False) -> CacheEntry:
        """Return the group's catalog record, refreshing it when stale.

        Refreshes for one group are serialised: a caller arriving while
        another refresh is in flight waits, then sees the new record.
        """
        with self._lock_for(group):
            now = self.clock()
            cached = self.store.get(group)
            age = self.store.age_of(group, now)
            if cached is not None and age is not None and not force_refresh:
                if age < self.max_age:
                    logger.debug("Using cached %s (age %s)", group, age)
                    return cached

            logger.info("Fetching fresh %s catalog", group)
            try:
                text = self.fetch(group)
                if not text or not text.strip():
                    raise UpstreamFetchFailure(f"Empty TLE response for {group}")
            except UpstreamFetchFailure as exc:
                if cached is not None:
                    logger.warning(
                        "Fetch failed for %s (%s); serving degraded cache from %s",
                        group, exc, cached.fetched_at.isoformat(),
                    )
                    return cached
                logger.error("Fetch failed for %s and no cache available: %s", group, exc)
                raise NoCacheAvailable(
                    f"Failed to fetch {group} and no cache available"
                ) from exc

            try:
                entry = self.store.put(group, text, now)
            except OSError as exc:
                logger.warning("Could not persist %s catalog: %s", group, exc)
                return CacheEntry(group=group, text=text, fetched_at=now)
            logger.info("Cached %s catalog", group)
            return entry
