"""SGP4 propagation and Earth-fixed / topocentric coordinate transforms.

Design notes
------------
* SGP4 comes from the ``sgp4`` package (Satrec, C extension); this module
  only adapts it to "element set + instant -> ECI position in km".
* SGP4 returns positions in the TEME (True Equator Mean Equinox) frame,
  which is treated as quasi-ECI here.  The TEME–J2000 difference is a
  few arc-seconds — negligible for satellite visibility.
* TEME → ECEF via GMST rotation (accurate to ~0.1″ for our purposes).
* ECEF → geodetic and ECEF → topocentric ENU → azimuth / elevation /
  slant range both use WGS-84.
* The coverage footprint uses a spherical Earth (mean radius 6371 km).

Assumptions
-----------
* Atmospheric refraction is *not* modelled.
* All functions accept a single position vector of shape (3,); the
  transforms also broadcast over leading dimensions.
"""

from __future__ import annotations

from datetime import datetime, timezone

import numpy as np
from sgp4.api import SGP4_ERRORS, Satrec, jday

from tle_cache import OrbitalElementSet

# ---------------------------------------------------------------------------
# WGS-84 constants
# ---------------------------------------------------------------------------
WGS84_A = 6378.137          # semi-major axis, km
WGS84_F = 1.0 / 298.257223563
WGS84_E2 = 2.0 * WGS84_F - WGS84_F ** 2  # first eccentricity squared

# Earth mean radius for footprint geometry (km)
EARTH_RADIUS_KM = 6371.0

# Minimum elevation defining the coverage footprint edge (degrees)
MIN_ELEVATION_DEG = 10.0

_GEODETIC_MAX_ITER = 20
_GEODETIC_TOL_RAD = 1e-12


class PropagationError(RuntimeError):
    """SGP4 could not produce a position (decayed or invalid elements)."""


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def julian_date(instant: datetime) -> tuple[float, float]:
    """Split Julian date (whole, fraction) for an aware datetime."""
    instant = instant.astimezone(timezone.utc)
    second = instant.second + instant.microsecond / 1e6
    return jday(instant.year, instant.month, instant.day,
                instant.hour, instant.minute, second)


def gmst_rad(jd):
    """Greenwich Mean Sidereal Time in radians for Julian date(s).

    Accuracy: ~0.1 arc-second — sufficient for satellite visibility work.
    """
    T = (jd - 2451545.0) / 36525.0
    theta_deg = (
        280.46061837
        + 360.98564736629 * (jd - 2451545.0)
        + T * T * (0.000387933 - T / 38710000.0)
    )
    return np.deg2rad(theta_deg % 360.0)


# ---------------------------------------------------------------------------
# Propagation
# ---------------------------------------------------------------------------

def propagate(element_set: OrbitalElementSet, instant: datetime) -> np.ndarray:
    """Propagate one element set to ``instant``; return TEME position (km).

    Raises PropagationError for unparseable lines, a non-zero SGP4 error
    code, or a non-finite result.
    """
    try:
        sat = Satrec.twoline2rv(element_set.line1, element_set.line2)
    except ValueError as exc:
        raise PropagationError(
            f"NORAD {element_set.norad_id}: invalid element set: {exc}"
        ) from exc

    jd, fr = julian_date(instant)
    e, r, _ = sat.sgp4(jd, fr)
    if e != 0:
        reason = SGP4_ERRORS.get(e, f"error code {e}")
        raise PropagationError(f"NORAD {element_set.norad_id}: {reason}")

    r_eci = np.asarray(r, dtype=np.float64)
    if not np.all(np.isfinite(r_eci)):
        raise PropagationError(f"NORAD {element_set.norad_id}: non-finite position")
    return r_eci


# ---------------------------------------------------------------------------
# Frame transforms
# ---------------------------------------------------------------------------

def eci_to_ecef(r_eci: np.ndarray, jd: float) -> np.ndarray:
    """Rotate an ECI (TEME) position vector to ECEF about the z axis."""
    theta = gmst_rad(jd)
    cos_t = np.cos(theta)
    sin_t = np.sin(theta)

    x = r_eci[..., 0]
    y = r_eci[..., 1]
    z = r_eci[..., 2]

    r_ecef = np.empty_like(r_eci, dtype=np.float64)
    r_ecef[..., 0] = x * cos_t + y * sin_t
    r_ecef[..., 1] = -x * sin_t + y * cos_t
    r_ecef[..., 2] = z
    return r_ecef


def geodetic_to_ecef(lat_deg: float, lon_deg: float, alt_km: float = 0.0) -> np.ndarray:
    """Convert geodetic coordinates to WGS-84 ECEF (km).

    Parameters
    ----------
    lat_deg : geodetic latitude, degrees
    lon_deg : longitude, degrees east
    alt_km  : altitude above ellipsoid, km (default 0 = sea level)

    Returns
    -------
    np.ndarray shape (3,) — [x, y, z] in km
    """
    lat = np.deg2rad(lat_deg)
    lon = np.deg2rad(lon_deg)
    N = WGS84_A / np.sqrt(1.0 - WGS84_E2 * np.sin(lat) ** 2)
    x = (N + alt_km) * np.cos(lat) * np.cos(lon)
    y = (N + alt_km) * np.cos(lat) * np.sin(lon)
    z = (N * (1.0 - WGS84_E2) + alt_km) * np.sin(lat)
    return np.array([x, y, z])


def ecef_to_geodetic(r_ecef: np.ndarray) -> tuple[float, float, float]:
    """Convert an ECEF position (km) to WGS-84 (lat_deg, lon_deg, alt_km).

    Fixed-point iteration on geodetic latitude; the height formula stays
    well conditioned at the poles.
    """
    x, y, z = (float(c) for c in r_ecef)
    lon = np.arctan2(y, x)
    p = np.hypot(x, y)

    lat = np.arctan2(z, p * (1.0 - WGS84_E2))
    for _ in range(_GEODETIC_MAX_ITER):
        sin_lat = np.sin(lat)
        N = WGS84_A / np.sqrt(1.0 - WGS84_E2 * sin_lat ** 2)
        new_lat = np.arctan2(z + N * WGS84_E2 * sin_lat, p)
        if abs(new_lat - lat) < _GEODETIC_TOL_RAD:
            lat = new_lat
            break
        lat = new_lat

    sin_lat = np.sin(lat)
    alt = (p * np.cos(lat) + z * sin_lat
           - WGS84_A * np.sqrt(1.0 - WGS84_E2 * sin_lat ** 2))
    return float(np.rad2deg(lat)), float(np.rad2deg(lon)), float(alt)


def look_angles(
    r_ecef: np.ndarray,
    lat_deg: float,
    lon_deg: float,
    alt_km: float = 0.0,
) -> tuple[float, float, float]:
    """Compute topocentric azimuth, elevation, slant range from ECEF coords.

    Parameters
    ----------
    r_ecef  : shape (3,), satellite ECEF position, km
    lat_deg : observer geodetic latitude, degrees
    lon_deg : observer geodetic longitude, degrees
    alt_km  : observer altitude above ellipsoid, km

    Returns
    -------
    az_deg   : azimuth [0, 360) degrees
    el_deg   : elevation [-90, 90] degrees (NaN when range is zero)
    slant_km : slant range km
    """
    obs_ecef = geodetic_to_ecef(lat_deg, lon_deg, alt_km)
    lat = np.deg2rad(lat_deg)
    lon = np.deg2rad(lon_deg)

    # Range vector (satellite − observer) in ECEF
    dx, dy, dz = np.asarray(r_ecef, dtype=np.float64) - obs_ecef
    slant_km = float(np.sqrt(dx * dx + dy * dy + dz * dz))

    # Rotate range vector to local East-North-Up frame
    sin_lat, cos_lat = np.sin(lat), np.cos(lat)
    sin_lon, cos_lon = np.sin(lon), np.cos(lon)

    E = -sin_lon * dx + cos_lon * dy
    N = -sin_lat * cos_lon * dx - sin_lat * sin_lon * dy + cos_lat * dz
    U = cos_lat * cos_lon * dx + cos_lat * sin_lon * dy + sin_lat * dz

    if slant_km > 0.0:
        el_rad = np.arcsin(np.clip(U / slant_km, -1.0, 1.0))
    else:
        el_rad = np.nan
    az_rad = np.arctan2(E, N) % (2.0 * np.pi)

    return float(np.rad2deg(az_rad)), float(np.rad2deg(el_rad)), slant_km


# ---------------------------------------------------------------------------
# Footprint
# ---------------------------------------------------------------------------

def coverage_radius_km(
    altitude_km: float, min_elevation_deg: float = MIN_ELEVATION_DEG
) -> float:
    """Ground radius (km) of the footprint where elevation ≥ min_elevation_deg.

    Spherical-Earth relation for a satellite at height h:

        λ = acos(R·cos(ε) / (R + h)) − ε,   radius = R·λ

    Independent of where the observer is; a satellite at or below the
    surface has zero footprint.
    """
    el = np.deg2rad(min_elevation_deg)
    ratio = EARTH_RADIUS_KM * np.cos(el) / (EARTH_RADIUS_KM + altitude_km)
    central_angle = np.arccos(np.clip(ratio, -1.0, 1.0)) - el
    return float(EARTH_RADIUS_KM * max(central_angle, 0.0))
