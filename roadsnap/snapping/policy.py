"""Snap decision policy: dead-reckon, look up a road, accept or reject by heading."""

from __future__ import annotations

import logging

from pyproj import Geod

from roadsnap.common.config_loader import MatchingConfig
from roadsnap.common.geometry import angle_diff, extrapolate, normalize_heading
from roadsnap.common.logging import log_event
from roadsnap.common.models import (
    EXTRAPOLATED_NO_MATCH,
    HEADING_REJECTED,
    SNAPPED,
    GeoPoint,
    RoadMatch,
    SnapOutcome,
    SourceRecord,
)
from roadsnap.snapping.locator import RoadLocator

logger = logging.getLogger(__name__)

_GEOD = Geod(ellps="WGS84")


def geodesic_distance_m(a: GeoPoint, b: GeoPoint) -> float:
    _fwd, _back, distance = _GEOD.inv(a.lon, a.lat, b.lon, b.lat)
    return float(distance)


class SnapDecisionPolicy:
    """Turns one source record into a concrete corrected point.

    Holds no per-call state, so one instance can serve a whole thread pool.
    With ``locator=None`` the policy only dead-reckons.
    """

    def __init__(self, config: MatchingConfig, locator: RoadLocator | None) -> None:
        self.config = config
        self.locator = locator

    def dead_reckon(self, record: SourceRecord) -> GeoPoint:
        return extrapolate(record.point, record.heading, self.config.extrapolation_distance_m)

    def decide(self, record: SourceRecord, label: str | None = None) -> SnapOutcome:
        label = label or str(record.key)
        candidate = self.dead_reckon(record)
        if self.locator is None:
            return self._fallback(
                record,
                candidate,
                EXTRAPOLATED_NO_MATCH,
                f"Road lookup disabled for {label} → using extrapolated point",
            )

        country = record.country_code or self.config.default_country
        match = self.locator.locate(candidate, normalize_heading(record.heading), country)
        if match is None:
            outcome = self._fallback(
                record,
                candidate,
                EXTRAPOLATED_NO_MATCH,
                f"No snap point found for {label} → using extrapolated point",
            )
        else:
            outcome = self._judge_match(record, candidate, match, label)

        log_event(
            logger,
            outcome.message,
            item_id=str(record.key),
            provider=outcome.provider_id,
            event="SNAP_DECISION",
            status=outcome.method,
        )
        return outcome

    def _judge_match(self, record: SourceRecord, candidate: GeoPoint, match: RoadMatch, label: str) -> SnapOutcome:
        heading = normalize_heading(record.heading)
        road_heading = normalize_heading(match.road_heading) if match.road_heading is not None else heading
        diff = angle_diff(heading, road_heading)

        if diff > self.config.heading_tolerance_deg:
            return self._fallback(
                record,
                candidate,
                HEADING_REJECTED,
                f"Bearing mismatch {diff:.1f}° > ±{self.config.heading_tolerance_deg:g}° for {label}"
                " → using extrapolated point",
            )

        return SnapOutcome(
            key=record.key,
            original_point=record.point,
            final_point=match.point,
            final_heading=road_heading,
            method=SNAPPED,
            message=f"Snapped to road for {label} (bearing: {road_heading:.1f}°, diff: {diff:.1f}°)",
            way_id=match.way_id,
            way_name=match.way_name,
            provider_id=match.provider_id,
            search_radius_m=match.search_radius_m,
            snap_offset_m=round(geodesic_distance_m(candidate, match.point), 2),
        )

    def _fallback(self, record: SourceRecord, candidate: GeoPoint, method: str, message: str) -> SnapOutcome:
        return SnapOutcome(
            key=record.key,
            original_point=record.point,
            final_point=candidate,
            final_heading=normalize_heading(record.heading),
            method=method,
            message=message,
        )
