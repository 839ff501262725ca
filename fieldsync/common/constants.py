"""Application constants."""

USER_AGENT = "fieldsync/0.4 (+leak-reporting field client)"
EARTH_RADIUS_M = 6_371_000.0
COMMANDS = (
    "download",
    "nearest",
    "search",
    "drain",
    "status",
    "drafts",
)
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "component",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "page",
    "records",
    "submission_id",
    "error_code",
    "message",
)

# Persisted key layout.
MANIFEST_KEY = "dataset.manifest"
CHUNK_KEY_PREFIX = "dataset.chunk."
INDEX_KEY = "dataset.index"
LAST_CHECK_KEY = "dataset.lastCheck"
QUEUE_KEY = "queue.items"
SYNC_STATUS_KEY = "sync.lastStatus"
DRAFTS_KEY = "drafts.list"
CURRENT_FORM_KEY = "form.current"
FORM_ACTIVE_KEY = "form.active"
ACTIVITY_KEY = "activity.lastTimestamp"
SESSION_PREFIX = "session."

MIN_SEARCH_QUERY_LENGTH = 5
DEFAULT_SEARCH_LIMIT = 20
