"""Application constants."""

HOST_URL = "https://maps.googleapis.com/maps/api/geocode/json"
CLIENT_ID_PREFIX = "gme-"
USER_AGENT = "geobatch/0.1 (+batch geocoding client)"
ENV_PREFIX = "GEOBATCH_"
MIN_COLUMNS = 3
TRUE_SPELLINGS = ("1", "true")
FALSE_SPELLINGS = ("0", "false")
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "stage",
    "source",
    "record_id",
    "event",
    "status",
    "qps",
    "duration_ms",
    "rows_in",
    "rows_out",
    "error_code",
    "message",
)
