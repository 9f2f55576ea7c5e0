"""Downlink availability estimate from observer–satellite geometry.

Background
----------
Free-space path loss for a slant range d (km) at carrier frequency f (GHz):

    FSPL(dB) = 32.44 + 20·log10(d) + 20·log10(f)

A satellite is counted as "available" when it is above the minimum useful
elevation AND the free-space loss is below MAX_PATH_LOSS_DB.  Both limits
are coarse service thresholds, not a full link budget (no antenna gains,
rain fade, or EIRP).

Downlink bands modelled
-----------------------
Iridium   L-band  ~1.6 GHz
Starlink  Ku-band ~12 GHz user downlink
Kuiper    Ku-band ~12 GHz user downlink
"""

from __future__ import annotations

import math
from dataclasses import dataclass

# Downlink carrier per constellation id (GHz).
DOWNLINK_FREQ_GHZ: dict[str, float] = {
    "iridium": 1.6,
    "starlink": 12.0,
    "kuiper": 12.0,
}
DEFAULT_FREQ_GHZ: float = 1.6

# Availability thresholds.
MIN_USEFUL_EL_DEG: float = 10.0
MAX_PATH_LOSS_DB: float = 160.0


@dataclass
class LinkBudgetResult:
    path_loss_db: float | None
    available: bool
    coverage_radius_km: float


def downlink_frequency_ghz(constellation: str) -> float:
    """Downlink carrier for a constellation; unknown ids get the L-band default."""
    return DOWNLINK_FREQ_GHZ.get(constellation, DEFAULT_FREQ_GHZ)


def free_space_path_loss_db(range_km: float, freq_ghz: float) -> float:
    return 32.44 + 20.0 * math.log10(range_km) + 20.0 * math.log10(freq_ghz)


def is_available(elevation_deg: float | None, path_loss_db: float | None) -> bool:
    """True iff elevation > MIN_USEFUL_EL_DEG and loss < MAX_PATH_LOSS_DB."""
    if elevation_deg is None or path_loss_db is None:
        return False
    return elevation_deg > MIN_USEFUL_EL_DEG and path_loss_db < MAX_PATH_LOSS_DB


def usable_range(range_km: float | None) -> bool:
    """A range is usable for link math only when finite and positive."""
    return range_km is not None and math.isfinite(range_km) and range_km > 0.0


def evaluate_link(
    range_km: float | None,
    elevation_deg: float | None,
    constellation: str,
    coverage_radius_km: float,
) -> LinkBudgetResult:
    """Score one satellite.

    Degenerate geometry (non-finite or non-positive range) yields no path
    loss and ``available=False``; the footprint radius is still reported.
    """
    if not usable_range(range_km):
        return LinkBudgetResult(None, False, coverage_radius_km)

    loss = free_space_path_loss_db(range_km, downlink_frequency_ghz(constellation))
    return LinkBudgetResult(
        path_loss_db=loss,
        available=is_available(elevation_deg, loss),
        coverage_radius_km=coverage_radius_km,
    )
