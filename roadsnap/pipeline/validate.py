"""Batch request validation against explicit per-category item schemas."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from roadsnap.common.constants import OVERRIDE_TYPE_SENTINEL
from roadsnap.common.errors import RequestValidationError

# A checker returns a reason string when the value is invalid, else None.
Checker = Callable[[Any], "str | None"]


def check_identifier(value: Any) -> str | None:
    if isinstance(value, bool):
        return "must be an integer or string identifier"
    if isinstance(value, int):
        return None if value > 0 else "must be a positive integer"
    if isinstance(value, str):
        return None if value.strip() else "must not be blank"
    return "must be an integer or string identifier"


def check_non_negative_int(value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return "must be a non-negative integer"
    return None


def check_non_empty_string(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return "must be a non-empty string"
    return None


def check_override_type(value: Any) -> str | None:
    if value != OVERRIDE_TYPE_SENTINEL:
        return f'must be "{OVERRIDE_TYPE_SENTINEL}" if provided, got "{value}"'
    return None


def check_optional_number(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return "must be a number or null"
    return None


@dataclass(frozen=True)
class FieldSpec:
    name: str
    check: Checker
    required: bool = True


@dataclass(frozen=True)
class ItemSchema:
    fields: tuple[FieldSpec, ...]
    # Input field name -> canonical name copied onto the item after validation.
    aliases: dict[str, str] = field(default_factory=dict)

    @property
    def required_names(self) -> tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.required)


@dataclass(frozen=True)
class BatchRequest:
    items: list[dict[str, Any]]
    detailed: bool = False


def _item_errors(item: Any, schema: ItemSchema, list_field: str, describe: Callable[[dict], str]) -> list[str]:
    if not isinstance(item, dict):
        return [f"Each item in {list_field} must be an object"]

    missing = [name for name in schema.required_names if item.get(name) in (None, "")]
    if missing:
        return [f"Missing {', '.join(missing)} in one of the items"]

    errors = []
    for spec in schema.fields:
        if spec.name not in item:
            continue
        reason = spec.check(item[spec.name])
        if reason is not None:
            errors.append(f"For {describe(item)}, {spec.name} {reason}")
    return errors


def _duplicate_errors(items: list[dict], key: Callable[[dict], Any], describe: Callable[[dict], str]) -> list[str]:
    seen: set[str] = set()
    errors = []
    for item in items:
        item_key = str(key(item))
        if item_key in seen:
            errors.append(f"Duplicate {describe(item)} in one batch")
        seen.add(item_key)
    return errors


def _normalise_item(item: dict[str, Any], schema: ItemSchema) -> dict[str, Any]:
    normalised = dict(item)
    for source, target in schema.aliases.items():
        if source in item:
            normalised[target] = item[source]
    return normalised


def validate_batch_request(
    body: Any,
    *,
    list_field: str,
    schema: ItemSchema,
    describe: Callable[[dict], str],
    key: Callable[[dict], Any] | None = None,
) -> BatchRequest:
    """Check the whole batch up front; any failure rejects the batch untouched.

    With ``key`` set, an identifier repeated within one batch is an error.
    """
    if not isinstance(body, dict):
        raise RequestValidationError("Request body must be a JSON object")

    items = body.get(list_field)
    if not isinstance(items, list) or not items:
        raise RequestValidationError(f"{list_field} must be a non-empty array")

    errors: list[str] = []
    for item in items:
        errors.extend(_item_errors(item, schema, list_field, describe))
    if not errors and key is not None:
        errors.extend(_duplicate_errors(items, key, describe))
    if errors:
        raise RequestValidationError(f"Invalid {list_field} format", details=errors)

    return BatchRequest(
        items=[_normalise_item(item, schema) for item in items],
        detailed=bool(body.get("detailed", False)),
    )
