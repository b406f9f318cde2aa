"""Application constants."""

USER_AGENT = "roadsnap-overrides/1.0 (+override-api; contact: configured-email)"
OVERRIDE_TYPE_SENTINEL = "OVERRIDE_VALUE"
OVERRIDE_SOURCE_TAG = "MANUAL"
DEFAULT_OVERRIDE_TYPE = "OVERRIDE"
CATEGORIES = (
    "cluster",
    "violation",
    "stop-sign",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_SERVER_ERROR = 500
JSON_LOG_FIELDS = (
    "timestamp",
    "request_id",
    "category",
    "item_id",
    "provider",
    "event",
    "status",
    "radius_m",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
