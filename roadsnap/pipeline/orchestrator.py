"""Batch override orchestration, one instance per override category.

Validate -> fetch source rows -> snap fan-out -> duplicate check -> persist -> report.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from roadsnap.common.config_loader import EngineConfig
from roadsnap.common.constants import HTTP_BAD_REQUEST, HTTP_OK, HTTP_SERVER_ERROR
from roadsnap.common.errors import RequestValidationError, StoreError
from roadsnap.common.http import HttpClient
from roadsnap.common.ids import generate_request_id
from roadsnap.common.logging import log_event
from roadsnap.common.models import DUPLICATE_SKIPPED, SNAP_FAILED, SourceRecord
from roadsnap.common.time_utils import elapsed_ms
from roadsnap.pipeline.categories import CategorySpec
from roadsnap.pipeline.duplicates import DuplicateGuard
from roadsnap.pipeline.reports import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    ItemResult,
    build_report,
    error_body,
)
from roadsnap.pipeline.store import OverrideStore
from roadsnap.pipeline.validate import BatchRequest, validate_batch_request
from roadsnap.snapping.locator import RoadLocator
from roadsnap.snapping.policy import SnapDecisionPolicy
from roadsnap.snapping.providers import OverpassProvider, RegionalSnapProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideResponse:
    status_code: int
    body: dict[str, Any]


class BatchOrchestrator:
    def __init__(
        self,
        spec: CategorySpec,
        store: OverrideStore,
        policy: SnapDecisionPolicy,
        *,
        max_workers: int = 8,
        duplicate_guard: DuplicateGuard | None = None,
    ) -> None:
        self.spec = spec
        self.store = store
        self.policy = policy
        self.max_workers = max(1, int(max_workers))
        self.duplicate_guard = duplicate_guard
        if spec.check_duplicates and duplicate_guard is None:
            self.duplicate_guard = DuplicateGuard(store)

    def handle(self, body: Any) -> OverrideResponse:
        """Process one inbound batch; never raises."""
        request_id = generate_request_id(self.spec.name)
        fields = {"request_id": request_id, "category": self.spec.name}
        started = time.monotonic()

        try:
            request = validate_batch_request(
                body,
                list_field=self.spec.list_field,
                schema=self.spec.item_schema,
                describe=self.spec.describe_item,
                key=self.spec.item_key,
            )
        except RequestValidationError as exc:
            log_event(
                logger,
                str(exc),
                level=logging.WARNING,
                event="REQUEST_INVALID",
                status="error",
                error_code=exc.error_code,
                **fields,
            )
            return OverrideResponse(HTTP_BAD_REQUEST, error_body(str(exc), exc.details))

        log_event(
            logger,
            f"[{self.spec.log_tag}] request received",
            event="REQUEST_RECEIVED",
            rows_in=len(request.items),
            **fields,
        )
        try:
            report = self._run(request, fields)
        except StoreError as exc:
            log_event(
                logger,
                str(exc),
                level=logging.ERROR,
                event="REQUEST_FAILED",
                status="error",
                error_code=exc.error_code,
                **fields,
            )
            return OverrideResponse(HTTP_SERVER_ERROR, error_body(str(exc)))
        except Exception:
            logger.exception(
                f"[{self.spec.log_tag}] unexpected failure",
                extra={"event": "REQUEST_FAILED", "status": "error", "error_code": "UNEXPECTED_ERROR", **fields},
            )
            return OverrideResponse(HTTP_SERVER_ERROR, error_body("Internal server error"))

        log_event(
            logger,
            report["message"],
            event="REQUEST_DONE",
            status="ok",
            duration_ms=elapsed_ms(started),
            rows_in=len(request.items),
            rows_out=report["processed_count"],
            **fields,
        )
        return OverrideResponse(HTTP_OK, report)

    def _run(self, request: BatchRequest, fields: dict[str, Any]) -> dict[str, Any]:
        batch = self.store.fetch_batch(self.spec.name, request.items)
        log_event(logger, "store batch fetched", event="FETCH_DONE", rows_out=len(batch.rows), **fields)

        if not batch.rows:
            log_event(logger, self.spec.no_items_message, level=logging.WARNING, event="NO_VALID_ITEMS", **fields)
            return build_report(self.spec, request.items, {}, batch, request.detailed)

        results = self._snap_all(batch.rows, fields)
        if self.spec.check_duplicates:
            results = self._apply_duplicate_guard(results, fields)

        accepted = [result for result in results if result.status == STATUS_SUCCESS]
        if accepted:
            rows = [self.spec.build_override_row(result.record, result.outcome) for result in accepted]
            self.store.write_overrides(self.spec.name, rows)
            log_event(logger, f"inserted {len(rows)} overrides", event="WRITE_DONE", rows_out=len(rows), **fields)
        else:
            log_event(logger, "no rows to insert", event="WRITE_SKIPPED", rows_out=0, **fields)

        by_key = {str(result.key): result for result in results}
        return build_report(self.spec, request.items, by_key, batch, request.detailed)

    def _snap_one(self, row: dict, fields: dict[str, Any]) -> ItemResult:
        started = time.monotonic()
        record = self.spec.build_record(row)
        label = self.spec.label(record.key)
        outcome = self.policy.decide(record, label)
        log_event(
            logger,
            f"snap done for {label}",
            event="SNAP_DONE",
            status=outcome.method,
            item_id=str(record.key),
            duration_ms=elapsed_ms(started),
            **fields,
        )
        return ItemResult(
            key=record.key,
            status=STATUS_SUCCESS,
            method=outcome.method,
            message=f"Created override for {self.spec.created_subject} {record.key} and inserted successfully",
            record=record,
            outcome=outcome,
        )

    def _snap_failed(self, row: dict, exc: Exception, fields: dict[str, Any]) -> ItemResult:
        try:
            key = self.spec.row_key(row)
        except (KeyError, TypeError):
            key = None
        log_event(
            logger,
            f"snap failed for {self.spec.label(key)}: {exc}",
            level=logging.ERROR,
            event="SNAP_FAILED",
            status="error",
            item_id=str(key),
            error_code=getattr(exc, "error_code", "UNEXPECTED_ERROR"),
            **fields,
        )
        return ItemResult(
            key=key,
            status=STATUS_FAILED,
            method=SNAP_FAILED,
            message=f"{self.spec.label(key)} snap failed: {exc}",
        )

    def _snap_all(self, rows: list[dict], fields: dict[str, Any]) -> list[ItemResult]:
        results: list[ItemResult] = []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(rows))) as pool:
            futures = [(row, pool.submit(self._snap_one, row, fields)) for row in rows]
            for row, future in futures:
                try:
                    results.append(future.result())
                except Exception as exc:
                    results.append(self._snap_failed(row, exc, fields))
        return results

    def _check_duplicate(self, result: ItemResult) -> ItemResult:
        record: SourceRecord = result.record
        outcome = result.outcome
        check = self.duplicate_guard.is_duplicate(
            outcome.final_point,
            outcome.final_heading,
            record.speed_limit_read_by_engine,
        )
        if not check.duplicate:
            return result
        return ItemResult(
            key=result.key,
            status=STATUS_SKIPPED,
            method=DUPLICATE_SKIPPED,
            message=f"{self.spec.label(result.key)} skipped, ACTIVE override exists (ID: {check.existing_id})",
            record=record,
            outcome=outcome,
            existing_id=check.existing_id,
        )

    def _apply_duplicate_guard(self, results: list[ItemResult], fields: dict[str, Any]) -> list[ItemResult]:
        positions = [
            idx for idx, result in enumerate(results) if result.status == STATUS_SUCCESS and result.outcome.accepted
        ]
        if not positions:
            return results

        merged = list(results)
        # Store errors propagate out of map() and fail the batch.
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(positions))) as pool:
            candidates = [results[idx] for idx in positions]
            for idx, checked in zip(positions, pool.map(self._check_duplicate, candidates)):
                merged[idx] = checked

        skipped = sum(1 for result in merged if result.method == DUPLICATE_SKIPPED)
        if skipped:
            log_event(logger, f"{skipped} duplicates skipped", event="DUPLICATE_SKIPPED", rows_out=skipped, **fields)
        return merged


def build_orchestrator(
    spec: CategorySpec,
    config: EngineConfig,
    store: OverrideStore,
    http_client: HttpClient,
) -> BatchOrchestrator:
    """Wire providers, locator and policy for one category from engine config."""
    locator = None
    if spec.snap_to_road:
        regional = {}
        for provider_config in config.regional:
            provider = RegionalSnapProvider(provider_config, http_client)
            for country in provider_config.countries:
                regional[country] = provider
        locator = RoadLocator(config.matching, OverpassProvider(config.overpass, http_client), regional)
    policy = SnapDecisionPolicy(config.matching, locator)
    return BatchOrchestrator(spec, store, policy, max_workers=config.max_workers)
