from __future__ import annotations

import pytest

from roadsnap.common.config_loader import MatchingConfig
from roadsnap.common.geometry import extrapolate
from roadsnap.common.models import (
    EXTRAPOLATED_NO_MATCH,
    HEADING_REJECTED,
    SNAPPED,
    GeoPoint,
    RoadMatch,
    SourceRecord,
)
from roadsnap.snapping.policy import SnapDecisionPolicy

CONFIG = MatchingConfig(extrapolation_distance_m=50.0, heading_tolerance_deg=45.0, default_country="IND")
ORIGIN = GeoPoint(lat=12.9716, lon=77.5946)


class FakeLocator:
    def __init__(self, match):
        self.match = match
        self.calls: list[tuple] = []

    def locate(self, point, desired_heading, country_hint=None):
        self.calls.append((point, desired_heading, country_hint))
        return self.match


def _record(heading=90.0, country=None):
    return SourceRecord(key=7, point=ORIGIN, heading=heading, country_code=country)


def _match(road_heading):
    return RoadMatch(
        point=GeoPoint(lat=12.97165, lon=77.59420),
        road_heading=road_heading,
        provider_id="overpass",
        way_id=1001,
        way_name="MG Road",
        search_radius_m=75.0,
        source_provider="generic",
    )


def test_decide_without_match_uses_dead_reckoned_point():
    locator = FakeLocator(None)
    outcome = SnapDecisionPolicy(CONFIG, locator).decide(_record())

    expected = extrapolate(ORIGIN, 90.0, 50.0)
    assert outcome.method == EXTRAPOLATED_NO_MATCH
    assert outcome.final_point == expected
    assert outcome.final_heading == 90.0
    assert outcome.original_point == ORIGIN
    assert locator.calls == [(expected, 90.0, "IND")]


def test_decide_accepts_match_within_tolerance():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(_match(120.0))).decide(_record(heading=90.0), "Cluster 7")

    assert outcome.method == SNAPPED
    assert outcome.final_point == GeoPoint(lat=12.97165, lon=77.59420)
    assert outcome.final_heading == 120.0
    assert outcome.way_id == 1001
    assert outcome.way_name == "MG Road"
    assert outcome.search_radius_m == 75.0
    assert outcome.snap_offset_m > 0
    assert "Cluster 7" in outcome.message


def test_decide_accepts_match_exactly_at_tolerance():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(_match(135.0))).decide(_record(heading=90.0))
    assert outcome.method == SNAPPED


def test_decide_rejects_match_beyond_tolerance():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(_match(270.0))).decide(_record(heading=90.0))

    assert outcome.method == HEADING_REJECTED
    assert outcome.final_point == extrapolate(ORIGIN, 90.0, 50.0)
    assert outcome.final_point != _match(270.0).point
    assert outcome.final_heading == 90.0
    assert outcome.way_id is None
    assert "180.0°" in outcome.message


def test_decide_match_without_road_heading_uses_record_heading():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(_match(None))).decide(_record(heading=10.0))
    assert outcome.method == SNAPPED
    assert outcome.final_heading == 10.0


def test_decide_passes_record_country_hint():
    locator = FakeLocator(None)
    SnapDecisionPolicy(CONFIG, locator).decide(_record(country="USA"))
    assert locator.calls[0][2] == "USA"


def test_decide_without_locator_only_dead_reckons():
    outcome = SnapDecisionPolicy(CONFIG, None).decide(_record(heading=180.0))
    assert outcome.method == EXTRAPOLATED_NO_MATCH
    assert outcome.final_point.lat > ORIGIN.lat
    assert outcome.final_point.lon == pytest.approx(ORIGIN.lon)


def test_decide_wraps_out_of_range_road_heading():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(_match(370.0))).decide(_record(heading=0.0))
    assert outcome.method == SNAPPED
    assert outcome.final_heading == pytest.approx(10.0)


def test_decide_wraps_negative_record_heading_on_fallback():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(None)).decide(_record(heading=-10.0))
    assert outcome.method == EXTRAPOLATED_NO_MATCH
    assert outcome.final_heading == pytest.approx(350.0)


def test_decide_compares_wrapped_headings():
    outcome = SnapDecisionPolicy(CONFIG, FakeLocator(_match(350.0))).decide(_record(heading=-370.0))
    assert outcome.method == SNAPPED
    assert outcome.final_heading == pytest.approx(350.0)
