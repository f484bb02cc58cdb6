"""Default limits and time budgets used across shipyard."""

# Per-step time budgets in seconds.
DEFAULT_STEP_TIMEOUTS = {
    "analyze": 30.0,
    "docs": 45.0,
    "demo": 90.0,
    "pitch": 45.0,
    "terminal": 180.0,
}
DEFAULT_STEP_TIMEOUT = 60.0
PIPELINE_TIMEOUT = 180.0

# Store TTLs in seconds.
SESSION_TTL = 60 * 60
WORKFLOW_TTL = 60 * 60 * 24
APPROVAL_GATE_TTL = 60 * 60
ERROR_LOG_TTL = 60 * 60 * 24 * 7

CRITICAL_PRIORITY_THRESHOLD = 3
MAX_STEP_RETRIES = 3

# Grace period given to a cancelled step before it is abandoned.
CANCEL_GRACE_PERIOD = 1.0
