from __future__ import annotations

import json
from pathlib import Path

import pytest

from roadsnap.common.config_loader import MatchingConfig, OverpassConfig, RegionalProviderConfig
from roadsnap.common.errors import ProviderError
from roadsnap.common.models import GeoPoint
from roadsnap.snapping.locator import RoadLocator
from roadsnap.snapping.providers import OverpassProvider, RegionalSnapProvider, build_overpass_query

FIXTURES = Path(__file__).resolve().parents[1] / "fixtures"


class FakeHttpClient:
    def __init__(self, payload):
        self.payload = payload
        self.calls: list[dict] = []

    def post_form_json(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        return self.payload

    def get_json(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        return self.payload


def test_build_overpass_query_uses_around_filter():
    query = build_overpass_query(GeoPoint(lat=12.5, lon=77.25), 75.0, 30)
    assert query == (
        "[out:json][timeout:30];"
        "way(around:75.0,12.50000000,77.25000000)[highway];"
        "out geom tags;"
    )


def test_overpass_provider_keeps_only_usable_ways():
    payload = json.loads((FIXTURES / "overpass_ways.json").read_text(encoding="utf-8"))
    client = FakeHttpClient(payload)
    provider = OverpassProvider(OverpassConfig(endpoint="https://overpass.example/api"), client)

    ways = provider.nearby_ways(GeoPoint(lat=12.971, lon=77.5905), 50.0)

    assert [way["id"] for way in ways] == [1001, 1002]
    assert ways[0]["nodes"][1] == GeoPoint(lat=12.972, lon=77.59)
    assert client.calls[0]["url"] == "https://overpass.example/api"
    assert client.calls[0]["source_type"] == "overpass"
    assert "around:50.0" in client.calls[0]["data"]["data"]


def test_overpass_provider_skips_ways_with_null_nodes():
    payload = {
        "elements": [
            {"type": "way", "id": 1, "geometry": [None, {"lat": 1.0, "lon": 1.0}], "tags": {"highway": "x"}},
        ]
    }
    provider = OverpassProvider(OverpassConfig(), FakeHttpClient(payload))
    assert provider.nearby_ways(GeoPoint(lat=1.0, lon=1.0), 50.0) == []


def test_overpass_provider_rejects_payload_without_elements():
    provider = OverpassProvider(OverpassConfig(), FakeHttpClient({"remark": "runtime error"}))
    with pytest.raises(ProviderError):
        provider.nearby_ways(GeoPoint(lat=1.0, lon=1.0), 50.0)


def _regional(payload) -> tuple[RegionalSnapProvider, FakeHttpClient]:
    client = FakeHttpClient(payload)
    config = RegionalProviderConfig(name="usa", countries=("USA",), base_url="https://snap.example/snap")
    return RegionalSnapProvider(config, client), client


def test_regional_provider_returns_match_with_metadata():
    provider, client = _regional({"lat": 40.1, "lon": -74.2, "bearing": 92.5, "way_id": 77, "way_name": "Main St"})

    match = provider.match(GeoPoint(lat=40.0, lon=-74.0), 90.0, 200.0)

    assert match.point == GeoPoint(lat=40.1, lon=-74.2)
    assert match.road_heading == 92.5
    assert match.way_id == 77
    assert match.way_name == "Main St"
    assert match.provider_id == "usa"
    assert match.search_radius_m == 200.0
    assert client.calls[0]["params"] == {
        "lat": "40.00000000",
        "lon": "-74.00000000",
        "bearing": "90.0",
        "radius": 200.0,
    }


def test_regional_provider_without_coordinates_is_no_match():
    provider, _client = _regional({"error": "no road"})
    assert provider.match(GeoPoint(lat=40.0, lon=-74.0), 90.0, 200.0) is None


def test_regional_provider_missing_bearing_leaves_heading_unset():
    provider, _client = _regional({"lat": 40.1, "lon": -74.2})
    match = provider.match(GeoPoint(lat=40.0, lon=-74.0), 90.0, 200.0)
    assert match.road_heading is None


def test_regional_provider_malformed_coordinates_raise_provider_error():
    provider, _client = _regional({"lat": "north", "lon": -74.2})
    with pytest.raises(ProviderError):
        provider.match(GeoPoint(lat=40.0, lon=-74.0), 90.0, 200.0)


@pytest.mark.parametrize("tags", ["highway", ["highway", "primary"]])
def test_overpass_provider_skips_ways_with_non_mapping_tags(tags):
    payload = {
        "elements": [
            {"type": "way", "id": 1, "geometry": [{"lat": 1.0, "lon": 1.0}, {"lat": 1.001, "lon": 1.0}], "tags": tags},
        ]
    }
    provider = OverpassProvider(OverpassConfig(), FakeHttpClient(payload))
    assert provider.nearby_ways(GeoPoint(lat=1.0, lon=1.0), 50.0) == []


class SequencedHttpClient:
    def __init__(self, payloads):
        self.payloads = list(payloads)

    def post_form_json(self, url, **kwargs):
        return self.payloads.pop(0)


def test_locator_moves_to_next_radius_after_malformed_tags():
    geometry = [{"lat": 1.0, "lon": 1.0}, {"lat": 1.001, "lon": 1.0}]
    client = SequencedHttpClient(
        [
            {"elements": [{"type": "way", "id": 1, "geometry": geometry, "tags": "highway"}]},
            {"elements": [{"type": "way", "id": 2, "geometry": geometry, "tags": {"highway": "primary"}}]},
        ]
    )
    locator = RoadLocator(MatchingConfig(), OverpassProvider(OverpassConfig(), client), sleep=lambda _s: None)

    match = locator.locate(GeoPoint(lat=1.0005, lon=1.0001), 0.0)

    assert match is not None
    assert match.way_id == 2
    assert match.search_radius_m == 75.0


def test_regional_provider_wraps_road_heading():
    provider, _client = _regional({"lat": 40.1, "lon": -74.2, "bearing": 370})
    match = provider.match(GeoPoint(lat=40.0, lon=-74.0), 10.0, 200.0)
    assert match.road_heading == pytest.approx(10.0)
