"""Road locator: progressive-radius road matching with provider fallback."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_fixed

from roadsnap.common.config_loader import MatchingConfig
from roadsnap.common.errors import ProviderError
from roadsnap.common.geometry import (
    bearing,
    distance_to_segment,
    interpolate,
    normalize_heading,
    resolve_oneway_direction,
)
from roadsnap.common.logging import log_event
from roadsnap.common.models import GeoPoint, RoadMatch

logger = logging.getLogger(__name__)


class WayProvider(Protocol):
    provider_id: str

    def nearby_ways(self, point: GeoPoint, radius_m: float) -> list[dict]: ...


class SnapProvider(Protocol):
    provider_id: str

    def match(self, point: GeoPoint, heading_deg: float, radius_m: float) -> RoadMatch | None: ...


def best_segment_match(
    point: GeoPoint,
    ways: Iterable[dict],
    *,
    radius_m: float,
    provider_id: str,
) -> RoadMatch | None:
    """Closest projection of ``point`` onto any segment of ``ways``.

    Each segment yields one candidate per permitted travel direction; a
    candidate replaces the current best only when strictly closer.
    """
    best: RoadMatch | None = None
    for way in ways:
        forward, reverse = resolve_oneway_direction(way.get("tags"))
        nodes = way["nodes"]
        tags = way.get("tags") or {}
        for a, b in zip(nodes, nodes[1:]):
            segment_heading = bearing(a, b)
            headings = []
            if forward:
                headings.append(segment_heading)
            if reverse:
                headings.append(normalize_heading(segment_heading + 180.0))

            distance, fraction = distance_to_segment(point, a, b)
            for road_heading in headings:
                if best is not None and distance >= best.distance:
                    continue
                best = RoadMatch(
                    point=interpolate(a, b, fraction),
                    road_heading=road_heading,
                    provider_id=provider_id,
                    way_id=way.get("id"),
                    way_name=tags.get("name") or tags.get("ref") or None,
                    search_radius_m=radius_m,
                    source_provider="generic",
                    distance=distance,
                )
    return best


class RoadLocator:
    """Finds the best road position near a point.

    A regional provider registered for the country hint is asked once; any
    miss or failure drops straight through to the generic provider, which is
    searched over ``MatchingConfig.radius_schedule()`` with a fixed delay
    between radii. Provider failures never escape ``locate``.
    """

    def __init__(
        self,
        config: MatchingConfig,
        generic: WayProvider,
        regional: dict[str, SnapProvider] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.generic = generic
        self.regional = {code.upper(): provider for code, provider in (regional or {}).items()}
        self.sleep = sleep

    def locate(self, point: GeoPoint, desired_heading: float, country_hint: str | None = None) -> RoadMatch | None:
        regional = self.regional.get((country_hint or "").upper())
        if regional is not None:
            match = self._query_regional(regional, point, desired_heading)
            if match is not None:
                return match
        return self._search_generic(point)

    def _query_regional(self, provider: SnapProvider, point: GeoPoint, heading: float) -> RoadMatch | None:
        radius = self.config.max_radius_m
        log_event(
            logger,
            "querying regional provider",
            level=logging.DEBUG,
            provider=provider.provider_id,
            event="REGIONAL_QUERY",
            radius_m=radius,
        )
        try:
            match = provider.match(point, heading, radius)
        except ProviderError as exc:
            log_event(
                logger,
                f"regional provider failed, falling back: {exc}",
                level=logging.WARNING,
                provider=provider.provider_id,
                event="REGIONAL_FALLBACK",
                status="error",
                error_code=exc.error_code,
            )
            return None
        if match is None:
            log_event(
                logger,
                "regional provider had no match, falling back",
                provider=provider.provider_id,
                event="REGIONAL_FALLBACK",
                status="no_match",
            )
            return None
        log_event(
            logger,
            "regional provider matched",
            provider=provider.provider_id,
            event="SNAP_FOUND",
            status="ok",
            radius_m=radius,
        )
        return match

    def _search_generic(self, point: GeoPoint) -> RoadMatch | None:
        radii = self.config.radius_schedule()
        if not radii:
            return None
        remaining = iter(radii)

        def _attempt() -> RoadMatch | None:
            return self._query_generic_at(point, next(remaining))

        retrying = Retrying(
            stop=stop_after_attempt(len(radii)),
            wait=wait_fixed(self.config.retry_delay_seconds),
            retry=retry_if_result(lambda match: match is None),
            retry_error_callback=lambda _state: None,
            sleep=self.sleep,
        )
        match = retrying(_attempt)
        if match is None:
            log_event(
                logger,
                f"no road within {self.config.max_radius_m:.0f}m",
                provider=self.generic.provider_id,
                event="NO_MATCH",
                status="no_match",
                radius_m=radii[-1],
            )
        return match

    def _query_generic_at(self, point: GeoPoint, radius: float) -> RoadMatch | None:
        provider_id = self.generic.provider_id
        log_event(logger, "searching for roads", provider=provider_id, event="RADIUS_QUERY", radius_m=radius)
        try:
            ways = self.generic.nearby_ways(point, radius)
        except ProviderError as exc:
            log_event(
                logger,
                f"provider call failed: {exc}",
                level=logging.WARNING,
                provider=provider_id,
                event="PROVIDER_ERROR",
                status="error",
                radius_m=radius,
                error_code=exc.error_code,
            )
            return None

        match = best_segment_match(point, ways, radius_m=radius, provider_id=provider_id)
        if match is None:
            log_event(logger, "no roads in radius", provider=provider_id, event="RADIUS_EMPTY", radius_m=radius)
            return None
        log_event(
            logger,
            f"snapped to way {match.way_id}",
            provider=provider_id,
            event="SNAP_FOUND",
            status="ok",
            radius_m=radius,
        )
        return match
