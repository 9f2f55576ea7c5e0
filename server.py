"""HTTP interface for coverage reports.

    GET /api/<constellation>/coverage?lat=<f>&lng=<f>&alt=<m>&maxSats=<n>

Responds with the report JSON, or ``{"error": "..."}`` with 400 (bad
query), 404 (unknown constellation), 503 (no catalog available) or 500
(anything unexpected).
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from coverage_report import ObserverLocation, compute_coverage
from tle_cache import (
    NoCacheAvailable,
    TLECache,
    UnknownConstellation,
    resolve_group,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_LAT = 45.42
DEFAULT_LNG = -75.70
DEFAULT_ALT_M = 100.0


class InvalidQuery(ValueError):
    """A query parameter is missing its expected type or range."""


def _float_arg(name: str, default: float, lo: float | None = None, hi: float | None = None) -> float:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise InvalidQuery(f"{name} must be a number, got {raw!r}") from None
    if not math.isfinite(value):
        raise InvalidQuery(f"{name} must be finite")
    if (lo is not None and value < lo) or (hi is not None and value > hi):
        raise InvalidQuery(f"{name} must be between {lo} and {hi}")
    return value


def _max_sats_arg() -> int | None:
    raw = request.args.get("maxSats")
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise InvalidQuery(f"maxSats must be an integer, got {raw!r}") from None
    if value < 1:
        raise InvalidQuery("maxSats must be at least 1")
    return value


def create_app(
    cache: TLECache | None = None,
    clock: Callable[[], datetime] = utc_now,
    workers: int = 1,
) -> Flask:
    """Build the Flask app around one shared TLE cache."""
    app = Flask(__name__)
    tle_cache = cache if cache is not None else TLECache(clock=clock)

    @app.errorhandler(InvalidQuery)
    def _bad_query(exc):
        return jsonify(error=str(exc)), 400

    @app.errorhandler(UnknownConstellation)
    def _unknown_constellation(exc):
        return jsonify(error=str(exc)), 404

    @app.errorhandler(NoCacheAvailable)
    def _no_cache(exc):
        return jsonify(error=str(exc)), 503

    @app.errorhandler(Exception)
    def _internal_error(exc):
        if isinstance(exc, HTTPException):
            return jsonify(error=exc.description), exc.code
        logger.exception("Coverage request failed")
        return jsonify(error="Internal server error"), 500

    @app.get("/api/<constellation>/coverage")
    def coverage(constellation: str):
        resolve_group(constellation)
        logger.debug("Coverage request for %s: %s", constellation, request.args.to_dict())
        observer = ObserverLocation(
            latitude=_float_arg("lat", DEFAULT_LAT, -90.0, 90.0),
            longitude=_float_arg("lng", DEFAULT_LNG, -180.0, 180.0),
            altitude=_float_arg("alt", DEFAULT_ALT_M),
        )
        report = compute_coverage(
            constellation,
            observer,
            cache=tle_cache,
            clock=clock,
            max_sats=_max_sats_arg(),
            workers=workers,
        )
        return jsonify(report.to_dict())

    return app
