"""Geometry helpers: bearings, dead reckoning and segment projection.

All angles are compass degrees (0 = north, clockwise). Pure functions, no I/O.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

from roadsnap.common.models import GeoPoint

EARTH_RADIUS_M = 6371e3

ONEWAY_FORWARD_VALUES = {"yes", "1", "true"}
ONEWAY_REVERSE_VALUES = {"-1", "reverse"}


def normalize_heading(deg: float) -> float:
    wrapped = math.fmod(deg, 360.0)
    if wrapped < 0:
        wrapped += 360.0
    # fmod of a tiny negative can round up to exactly 360.0
    return 0.0 if wrapped >= 360.0 else wrapped


def bearing(a: GeoPoint, b: GeoPoint) -> float:
    """Initial great-circle heading from ``a`` to ``b`` in [0, 360)."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_lambda = math.radians(b.lon - a.lon)
    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return normalize_heading(math.degrees(math.atan2(y, x)))


def signed_angle_diff(a: float, b: float) -> float:
    """Signed rotation from heading ``a`` to heading ``b`` in (-180, 180]."""
    diff = normalize_heading(b - a)
    if diff > 180.0:
        diff -= 360.0
    return diff


def angle_diff(a: float, b: float) -> float:
    """Smallest absolute angle between two headings, in [0, 180]."""
    return abs(signed_angle_diff(a, b))


def extrapolate(point: GeoPoint, heading_deg: float, distance_m: float) -> GeoPoint:
    """Dead-reckon ``distance_m`` metres along the reverse of ``heading_deg``.

    The observation is assumed to have been made while travelling on
    ``heading_deg``, so the sign sits behind the vehicle.
    """
    reverse = math.radians(normalize_heading(heading_deg - 180.0))
    lat1 = math.radians(point.lat)
    lon1 = math.radians(point.lon)
    delta = distance_m / EARTH_RADIUS_M

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta) + math.cos(lat1) * math.sin(delta) * math.cos(reverse)
    )
    lon2 = lon1 + math.atan2(
        math.sin(reverse) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    lon_deg = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return GeoPoint(lat=math.degrees(lat2), lon=lon_deg)


def distance_to_segment(p: GeoPoint, a: GeoPoint, b: GeoPoint) -> tuple[float, float]:
    """Planar distance from ``p`` to segment ``ab`` and the clamped projection parameter.

    Coordinates are treated as a flat (lat, lon) plane, which is fine over the
    few hundred metres the locator searches.
    """
    dx_p = p.lat - a.lat
    dy_p = p.lon - a.lon
    dx_s = b.lat - a.lat
    dy_s = b.lon - a.lon
    len_sq = dx_s * dx_s + dy_s * dy_s
    param = (dx_p * dx_s + dy_p * dy_s) / len_sq if len_sq != 0 else 0.0
    param = max(0.0, min(1.0, param))
    nearest_lat = a.lat + param * dx_s
    nearest_lon = a.lon + param * dy_s
    return math.hypot(p.lat - nearest_lat, p.lon - nearest_lon), param


def interpolate(a: GeoPoint, b: GeoPoint, fraction: float) -> GeoPoint:
    return GeoPoint(lat=a.lat + (b.lat - a.lat) * fraction, lon=a.lon + (b.lon - a.lon) * fraction)


def resolve_oneway_direction(tags: Mapping[str, Any] | None) -> tuple[bool, bool]:
    """Return ``(forward_allowed, reverse_allowed)`` for a road from its tags."""
    tags = tags or {}
    oneway = str(tags.get("oneway", "")).strip().lower()
    junction = str(tags.get("junction", "")).strip().lower()

    if junction in {"roundabout", "circular"} or oneway in ONEWAY_FORWARD_VALUES:
        return True, False
    if oneway in ONEWAY_REVERSE_VALUES:
        return False, True
    return True, True
