"""Constants shared by the normalizer, resolver and materializer."""

# Calendar entries written by this engine carry this origin tag.
CALENDAR_ORIGIN = "PLAN_MATERIALIZER"

# source_id = SOURCE_ID_PREFIX + draft session id (the upsert idempotency key)
SOURCE_ID_PREFIX = "plan:"

SHORT_INCREMENT_MINUTES = 5
LONG_INCREMENT_MINUTES = 10
DEFAULT_LONG_SESSION_THRESHOLD_MINUTES = 90

MIN_WEEKS_TO_EVENT = 1
MAX_WEEKS_TO_EVENT = 52

DETAIL_INCREMENT_MINUTES = 5

# Calendar entry status values the engine reads or writes.
ENTRY_STATUS_PLANNED = "planned"
