"""Road-graph providers reached over HTTP.

``OverpassProvider`` is the generic provider: it returns raw OSM ways near a
point and leaves matching to the locator. ``RegionalSnapProvider`` wraps a
country-specific snap service that answers with a single best match.
"""

from __future__ import annotations

from typing import Any

from roadsnap.common.config_loader import OverpassConfig, RegionalProviderConfig
from roadsnap.common.errors import ProviderError
from roadsnap.common.geometry import normalize_heading
from roadsnap.common.http import HttpClient
from roadsnap.common.models import GeoPoint, RoadMatch


def build_overpass_query(point: GeoPoint, radius_m: float, query_timeout_seconds: int) -> str:
    return (
        f"[out:json][timeout:{int(query_timeout_seconds)}];"
        f"way(around:{radius_m:.1f},{point.lat:.8f},{point.lon:.8f})[highway];"
        "out geom tags;"
    )


def _parse_way(element: dict) -> dict | None:
    geometry = element.get("geometry")
    tags = element.get("tags")
    if not isinstance(geometry, list) or len(geometry) < 2 or not isinstance(tags, dict) or not tags:
        return None
    nodes: list[GeoPoint] = []
    for node in geometry:
        try:
            nodes.append(GeoPoint(lat=float(node["lat"]), lon=float(node["lon"])))
        except (KeyError, TypeError, ValueError):
            # Overpass emits null nodes for geometry clipped by the query bbox.
            return None
    return {"id": element.get("id"), "tags": dict(tags), "nodes": nodes}


class OverpassProvider:
    provider_id = "overpass"

    def __init__(self, config: OverpassConfig, http_client: HttpClient) -> None:
        self.config = config
        self.http_client = http_client

    def nearby_ways(self, point: GeoPoint, radius_m: float) -> list[dict]:
        """Highway ways within ``radius_m``; each has ``id``, ``tags`` and >= 2 ``nodes``."""
        query = build_overpass_query(point, radius_m, self.config.query_timeout_seconds)
        payload = self.http_client.post_form_json(
            self.config.endpoint,
            source_type=self.provider_id,
            data={"data": query},
            timeout=self.config.timeout,
        )
        elements = payload.get("elements") if isinstance(payload, dict) else None
        if not isinstance(elements, list):
            raise ProviderError("Overpass payload has no elements list")

        ways = []
        for element in elements:
            if not isinstance(element, dict) or element.get("type", "way") != "way":
                continue
            way = _parse_way(element)
            if way is not None:
                ways.append(way)
        return ways


class RegionalSnapProvider:
    source_provider = "regional"

    def __init__(self, config: RegionalProviderConfig, http_client: HttpClient) -> None:
        self.config = config
        self.http_client = http_client

    @property
    def provider_id(self) -> str:
        return self.config.name

    def match(self, point: GeoPoint, heading_deg: float, radius_m: float) -> RoadMatch | None:
        payload = self.http_client.get_json(
            self.config.base_url,
            source_type=self.provider_id,
            params={
                "lat": f"{point.lat:.8f}",
                "lon": f"{point.lon:.8f}",
                "bearing": f"{heading_deg:.1f}",
                "radius": radius_m,
            },
            timeout=self.config.timeout,
        )
        if not isinstance(payload, dict):
            raise ProviderError(f"{self.provider_id} returned a non-object payload")
        if payload.get("lat") is None or payload.get("lon") is None:
            return None

        try:
            snapped = GeoPoint(lat=float(payload["lat"]), lon=float(payload["lon"]))
            road_heading = _optional_float(payload.get("bearing"))
            if road_heading is not None:
                road_heading = normalize_heading(road_heading)
        except (TypeError, ValueError) as exc:
            raise ProviderError(f"{self.provider_id} returned malformed coordinates") from exc

        return RoadMatch(
            point=snapped,
            road_heading=road_heading,
            provider_id=self.provider_id,
            way_id=payload.get("way_id"),
            way_name=payload.get("way_name"),
            search_radius_m=radius_m,
            source_provider=self.source_provider,
        )


def _optional_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    return float(value)
