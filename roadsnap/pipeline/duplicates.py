"""Duplicate guard for violation-point overrides."""

from __future__ import annotations

import logging
from typing import Any

from roadsnap.common.logging import log_event
from roadsnap.common.models import DuplicateCheck, GeoPoint
from roadsnap.pipeline.store import OverrideStore

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """Asks the store whether an ACTIVE override already covers a corrected point."""

    def __init__(self, store: OverrideStore) -> None:
        self.store = store

    def is_duplicate(self, point: GeoPoint, heading: float, expected_value: Any) -> DuplicateCheck:
        check = self.store.check_duplicate(point, heading, expected_value)
        if check.duplicate:
            log_event(
                logger,
                f"active override {check.existing_id} already covers {point.lat:.6f}, {point.lon:.6f}",
                event="DUPLICATE_FOUND",
                status="skipped",
            )
        return check
