"""Constellation Coverage — CLI entry point.

Usage examples
--------------
  python main.py --lat 45.42 --lon -75.70
  python main.py --lat 51.5074 --lon -0.1278 --constellation iridium --format json
  python main.py --lat 40.7128 --lon -74.0060 --refresh --verbose
  python main.py --serve --port 3001
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time as time_mod

from coverage_report import CoverageReport, ObserverLocation, compute_coverage
from tle_cache import (
    CACHE_DIR,
    GROUPS,
    CacheStore,
    NoCacheAvailable,
    TLECache,
    UnknownConstellation,
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {raw!r}") from None
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Report which constellation satellites are visible from a "
                    "ground location right now, with downlink path loss.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--lat", type=float, default=45.42,
                   help="Observer latitude, degrees North")
    p.add_argument("--lon", type=float, default=-75.70,
                   help="Observer longitude, degrees East")
    p.add_argument("--alt", type=float, default=100.0,
                   help="Observer altitude, metres")
    p.add_argument("--constellation", choices=sorted(GROUPS), default="starlink",
                   help="Constellation to report on")
    p.add_argument("--format", choices=["table", "json"], default="table",
                   help="Output format")
    p.add_argument("--max-sats", type=_positive_int, default=None, dest="max_sats",
                   help="Report at most this many satellites")
    p.add_argument("--workers", type=_positive_int, default=1,
                   help="Threads used to evaluate satellites")
    p.add_argument("--cache-dir", default=str(CACHE_DIR), dest="cache_dir",
                   help="Directory holding cached TLE catalogs")
    p.add_argument("--refresh", action="store_true",
                   help="Force re-fetch of TLEs from CelesTrak (cache still "
                        "used as fallback)")
    p.add_argument("--serve", action="store_true",
                   help="Run the HTTP API instead of printing one report")
    p.add_argument("--host", default="127.0.0.1",
                   help="Bind address for --serve")
    p.add_argument("--port", type=int, default=3001,
                   help="Port for --serve")
    p.add_argument("--verbose", action="store_true",
                   help="Debug logging")
    return p


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Report formatter
# ---------------------------------------------------------------------------

def _fmt(value, spec: str) -> str:
    return "—" if value is None else format(value, spec)


def format_report_table(report: CoverageReport) -> str:
    if not report.satellites:
        return "No satellites in the catalog could be evaluated."

    hdr = (
        f"{'#':<4} {'Satellite':<24} {'NORAD':>6}  "
        f"{'Lat':>7}  {'Lon':>8}  {'Alt':>7}  {'El':>6}  {'Az':>6}  "
        f"{'Range':>8}  {'FSPL':>7}  {'Foot':>7}  Avail"
    )
    sep = "─" * len(hdr)
    rows = [hdr, sep]

    for i, sat in enumerate(report.satellites, 1):
        s, l = sat.state, sat.link
        warn = "  ⚠ DEGRADED TLE" if s.degraded else ""
        rows.append(
            f"{i:<4} {s.name[:24]:<24} {s.norad_id:>6}  "
            f"{s.lat:>6.2f}°  {s.lng:>7.2f}°  "
            f"{s.altitude_km:>5.0f}km  "
            f"{_fmt(s.elevation_deg, '>5.1f')}°  "
            f"{_fmt(s.azimuth_deg, '>5.1f')}°  "
            f"{_fmt(s.range_km, '>6.0f')}km  "
            f"{_fmt(l.path_loss_db, '>5.1f')}dB  "
            f"{l.coverage_radius_km:>5.0f}km  "
            f"{'yes' if l.available else 'no'}{warn}"
        )

    return "\n".join(rows)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.verbose)

    cache = TLECache(store=CacheStore(args.cache_dir))

    if args.serve:
        from server import create_app

        app = create_app(cache=cache, workers=args.workers)
        app.run(host=args.host, port=args.port)
        return 0

    observer = ObserverLocation(args.lat, args.lon, args.alt)
    _log(f"Computing {args.constellation} coverage…")
    t0 = time_mod.perf_counter()
    try:
        report = compute_coverage(
            args.constellation,
            observer,
            cache=cache,
            max_sats=args.max_sats,
            workers=args.workers,
            force_refresh=args.refresh,
        )
    except (UnknownConstellation, NoCacheAvailable) as exc:
        _log(f"error: {exc}")
        return 1
    _log(f"  Done in {time_mod.perf_counter() - t0:.2f} s.\n")

    if args.format == "json":
        print(json.dumps(report.to_dict(), indent=2))
        return 0

    print(
        f"{args.constellation.capitalize()} Coverage  "
        f"({args.lat:.4f}°N, {args.lon:.4f}°E, {args.alt:.0f} m)\n"
        f"Instant : {report.generated_at:%Y-%m-%d %H:%M:%S} UTC\n"
        f"Visible : {report.n_available}/{len(report.satellites)} available\n"
    )
    print(format_report_table(report))
    return 0


def _log(msg: str) -> None:
    print(msg, file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
