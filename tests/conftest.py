"""Shared fixtures: a small real-format catalog, a controllable clock, a
temp-dir cache store, and a recording fetch stand-in."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tle_cache import CacheStore, UpstreamFetchFailure

ISS_NAME = "ISS (ZARYA)"
ISS_LINE1 = "1 25544U 98067A   08264.51782528 -.00002182  00000-0 -11606-4 0  2927"
ISS_LINE2 = "2 25544  51.6416 247.4627 0006703 130.5360 325.0288 15.72125391563537"

VANGUARD_NAME = "VANGUARD 1"
VANGUARD_LINE1 = "1 00005U 58002B   00179.78495062  .00000023  00000-0  28098-4 0  4753"
VANGUARD_LINE2 = "2 00005  34.2682 348.7242 1859667 331.7664  19.3264 10.82419157413667"

# Just after the ISS element-set epoch (2008 day 264.51782528).
NOW = datetime(2008, 9, 20, 12, 25, 40, tzinfo=timezone.utc)


def make_triplet(norad_id: int, name: str | None = None) -> str:
    """ISS elements relabelled with another catalog number."""
    line1 = f"1 {norad_id:05d}" + ISS_LINE1[7:]
    line2 = f"2 {norad_id:05d}" + ISS_LINE2[7:]
    return f"{name or f'SAT-{norad_id}'}\n{line1}\n{line2}\n"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingFetch:
    """Stands in for fetch_catalog: returns ``text`` or raises ``error``."""

    def __init__(self, text: str | None = None, error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[str] = []

    def __call__(self, group: str) -> str:
        self.calls.append(group)
        if self.error is not None:
            raise self.error
        return self.text


class ReadOnlyStore(CacheStore):
    """CacheStore whose directory cannot be written."""

    def put(self, group, text, fetched_at):
        raise PermissionError(f"read-only cache directory: {self.directory}")


@pytest.fixture
def catalog_text() -> str:
    return (
        f"{ISS_NAME}\n{ISS_LINE1}\n{ISS_LINE2}\n"
        f"{VANGUARD_NAME}\n{VANGUARD_LINE1}\n{VANGUARD_LINE2}\n"
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def store(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / "tle-cache")


@pytest.fixture
def failing_fetch() -> RecordingFetch:
    return RecordingFetch(error=UpstreamFetchFailure("timed out"))
