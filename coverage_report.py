"""Point-in-time coverage report for one observer and one constellation.

For every cached element set (catalog order, capped by the TLE cache):

  1. propagate to the request instant (SGP4, TEME)
  2. rotate to ECEF, derive the sub-satellite geodetic position and the
     observer look angles
  3. compute the 10° footprint radius and the downlink path loss

Each satellite is evaluated independently.  A failure for one element set
is logged and that satellite is left out; the rest of the report is
unaffected.  Degenerate geometry (zero or non-finite range) keeps the
satellite with null range / loss fields.

The clock is read once per request, so every satellite in a report is
evaluated at the same instant.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import numpy as np

from link_budget import LinkBudgetResult, evaluate_link, usable_range
from propagator import (
    PropagationError,
    coverage_radius_km,
    ecef_to_geodetic,
    eci_to_ecef,
    julian_date,
    look_angles,
    propagate,
)
from tle_cache import (
    TLE_EPOCH_WARN_DAYS,
    OrbitalElementSet,
    TLECache,
    resolve_group,
    utc_now,
)

logger = logging.getLogger(__name__)

Propagate = Callable[[OrbitalElementSet, datetime], np.ndarray]


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ObserverLocation:
    latitude: float     # degrees North
    longitude: float    # degrees East
    altitude: float = 0.0  # metres above the ellipsoid

    @property
    def altitude_km(self) -> float:
        return self.altitude / 1000.0


@dataclass
class SatelliteState:
    norad_id: int
    name: str
    lat: float
    lng: float
    altitude_km: float
    elevation_deg: float | None
    azimuth_deg: float | None
    range_km: float | None
    epoch_age_days: float
    degraded: bool


@dataclass
class SatelliteCoverage:
    state: SatelliteState
    link: LinkBudgetResult

    def to_dict(self) -> dict:
        s, l = self.state, self.link
        return {
            "noradId": s.norad_id,
            "name": s.name,
            "lat": s.lat,
            "lng": s.lng,
            "altitudeKm": s.altitude_km,
            "elevation": _round_or_none(s.elevation_deg, 1),
            "azimuth": _round_or_none(s.azimuth_deg, 1),
            "rangeKm": _round_or_none(s.range_km),
            "pathLossDb": _round_or_none(l.path_loss_db),
            "coverageRadiusKm": l.coverage_radius_km,
            "available": bool(l.available),
            "epochAgeDays": round(s.epoch_age_days, 2),
            "degraded": s.degraded,
        }


@dataclass
class CoverageReport:
    observer: ObserverLocation
    constellation: str
    generated_at: datetime
    satellites: list[SatelliteCoverage] = field(default_factory=list)

    @property
    def n_available(self) -> int:
        return sum(1 for sat in self.satellites if sat.link.available)

    def to_dict(self) -> dict:
        return {
            "observer": {
                "lat": self.observer.latitude,
                "lng": self.observer.longitude,
                "alt": self.observer.altitude,
            },
            "constellation": self.constellation,
            "generatedAt": self.generated_at.isoformat(),
            "satellites": [sat.to_dict() for sat in self.satellites],
        }


def _round_or_none(value: float | None, ndigits: int | None = None):
    if value is None or not math.isfinite(value):
        return None
    return round(value, ndigits)


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Per-satellite pipeline
# ---------------------------------------------------------------------------

def evaluate_satellite(
    element_set: OrbitalElementSet,
    instant: datetime,
    observer: ObserverLocation,
    constellation: str,
    propagate: Propagate = propagate,
) -> SatelliteCoverage:
    """Run propagation → geometry → link budget for one element set.

    Raises PropagationError when SGP4 cannot produce a position.
    """
    r_eci = propagate(element_set, instant)
    jd, fr = julian_date(instant)
    r_ecef = eci_to_ecef(np.asarray(r_eci, dtype=np.float64), jd + fr)

    lat, lng, alt_km = ecef_to_geodetic(r_ecef)
    if not all(math.isfinite(v) for v in (lat, lng, alt_km)):
        raise PropagationError(f"NORAD {element_set.norad_id}: non-finite position")
    az, el, slant = look_angles(
        r_ecef, observer.latitude, observer.longitude, observer.altitude_km
    )
    radius = coverage_radius_km(alt_km)

    range_km = slant if usable_range(slant) else None
    elevation = _finite_or_none(el)
    azimuth = _finite_or_none(az) if range_km is not None else None
    link = evaluate_link(range_km, elevation, constellation, radius)

    age = element_set.epoch_age_days(instant)
    state = SatelliteState(
        norad_id=element_set.norad_id,
        name=element_set.name,
        lat=lat,
        lng=lng,
        altitude_km=alt_km,
        elevation_deg=elevation,
        azimuth_deg=azimuth,
        range_km=range_km,
        epoch_age_days=age,
        degraded=age > TLE_EPOCH_WARN_DAYS,
    )
    return SatelliteCoverage(state=state, link=link)


def _evaluate_or_skip(
    element_set: OrbitalElementSet,
    instant: datetime,
    observer: ObserverLocation,
    constellation: str,
    propagate: Propagate,
) -> SatelliteCoverage | None:
    """Per-item outcome: the satellite's coverage, or None after logging why."""
    try:
        return evaluate_satellite(element_set, instant, observer, constellation, propagate)
    except PropagationError as exc:
        logger.warning("Skipping NORAD %d: %s", element_set.norad_id, exc)
    except Exception:
        logger.exception("Unexpected error evaluating NORAD %d", element_set.norad_id)
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_report(
    element_sets: list[OrbitalElementSet],
    observer: ObserverLocation,
    constellation: str,
    instant: datetime,
    propagate: Propagate = propagate,
    workers: int = 1,
) -> CoverageReport:
    """Evaluate every element set at ``instant`` and assemble the report.

    Output order is input order.  ``workers`` > 1 evaluates satellites on a
    thread pool; each evaluation reads only the shared observer and its own
    element set.
    """
    def run(es: OrbitalElementSet) -> SatelliteCoverage | None:
        return _evaluate_or_skip(es, instant, observer, constellation, propagate)

    if workers > 1 and len(element_sets) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(run, element_sets))
    else:
        outcomes = [run(es) for es in element_sets]

    satellites = [o for o in outcomes if o is not None]
    skipped = len(outcomes) - len(satellites)
    if skipped:
        logger.info("%s: %d of %d satellites skipped", constellation, skipped, len(outcomes))

    return CoverageReport(
        observer=observer,
        constellation=constellation,
        generated_at=instant,
        satellites=satellites,
    )


def compute_coverage(
    constellation: str,
    observer: ObserverLocation,
    cache: TLECache | None = None,
    clock: Callable[[], datetime] = utc_now,
    propagate: Propagate = propagate,
    max_sats: int | None = None,
    workers: int = 1,
    force_refresh: bool = False,
) -> CoverageReport:
    """Answer "which satellites are visible now, and how good is the link?".

    Raises UnknownConstellation before touching the cache, ValueError for a
    ``max_sats`` below 1, and NoCacheAvailable when the catalog cannot be
    obtained at all.
    """
    group = resolve_group(constellation)
    if max_sats is not None and max_sats < 1:
        raise ValueError(f"max_sats must be at least 1, got {max_sats}")
    cache = cache if cache is not None else TLECache(clock=clock)

    element_sets = cache.get_element_sets(group, force_refresh=force_refresh)
    if max_sats is not None:
        element_sets = element_sets[:max_sats]

    report = build_report(
        element_sets, observer, constellation, clock(),
        propagate=propagate, workers=workers,
    )
    logger.info(
        "%s: %d/%d available", constellation, report.n_available, len(report.satellites)
    )
    return report
