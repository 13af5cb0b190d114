"""
================================================================================
FILE: permit_session/config/constants.py
================================================================================

PURPOSE:
    Engine-wide constants. Immutable defaults used by Settings and by the
    components when they are constructed without a Settings object (tests).

WORKFLOW:
    1. Define all constants (no computation, just values)
    2. Organize by category
    3. Use throughout the engine: from permit_session.config import CONSTANTS
    4. Never modify constants at runtime

IMPORTS:
    - None (only builtins)

CONSTANT CATEGORIES:
    1. API Configuration
    2. Session lifetime (24h TTL, history depth 5)
    3. Deduplication (1s fingerprint bucket, 5s window, 10,000 entries)
    4. Rate limits (50/h per identity, 1000/h global, 10/min per state)
    5. Lock lease
    6. Error tracking (10 errors/hour threshold, 1h suspension)
    7. Input length limits per field
    8. Retry configuration (linear backoff on store calls)
    9. Circuit breaker (extraction collaborator)

KEY FACTS:
    - No imports from other permit_session modules (prevent circular deps)
    - Settings uses these as defaults; env vars override them
"""

# ================================================================================
# API CONFIGURATION
# ================================================================================

API_VERSION = "v1"
API_PREFIX = f"/{API_VERSION}"
API_TITLE = "Permit Intake Session Engine"
API_DESCRIPTION = "Conversation session and recovery engine for permit intake"

# ================================================================================
# SESSION
# ================================================================================

SESSION_TTL_SECONDS = 86400  # 24 hours, refreshed on every save
SESSION_HISTORY_LIMIT = 5

# ================================================================================
# DEDUPLICATION
# ================================================================================

DEDUP_BUCKET_SECONDS = 1
DEDUP_WINDOW_SECONDS = 5
DEDUP_MAX_ENTRIES = 10000
DEDUP_SWEEP_INTERVAL_SECONDS = 300  # 5 minutes
MESSAGE_MARKER_TTL_SECONDS = 3600  # provider message-id marker

# ================================================================================
# RATE LIMITS
# ================================================================================

RATE_LIMIT_USER_POINTS = 50
RATE_LIMIT_USER_DURATION_SECONDS = 3600
RATE_LIMIT_GLOBAL_POINTS = 1000
RATE_LIMIT_GLOBAL_DURATION_SECONDS = 3600
RATE_LIMIT_STATE_POINTS = 10
RATE_LIMIT_STATE_DURATION_SECONDS = 60
# Buckets older than this many windows are gone (5 minutes for the state scope)
RATE_LIMIT_RETENTION_WINDOWS = 5

# ================================================================================
# DISTRIBUTED LOCK
# ================================================================================

LOCK_LEASE_MS = 5000
LOCK_WAIT_SECONDS = 2.0
LOCK_POLL_INTERVAL_SECONDS = 0.05

# ================================================================================
# ERROR TRACKING / RECOVERY
# ================================================================================

ERROR_THRESHOLD_PER_HOUR = 10
ERROR_WINDOW_SECONDS = 3600
SUSPENSION_SECONDS = 3600
ERROR_TRACKER_MAX_IDENTITIES = 10000
STORE_FAILURE_BACKOFF_CAP_MINUTES = 15
STORE_FAILURE_RESTORE_NOTICE_MAX_RETRIES = 3
ATTEMPTS_BEFORE_HELP = 3

# ================================================================================
# INPUT LIMITS
# ================================================================================

MAX_INPUT_LENGTHS = {
    "nombre_completo": 100,
    "curp_rfc": 50,
    "domicilio": 200,
    "email": 100,
    "marca": 50,
    "linea": 50,
    "color": 30,
    "numero_serie": 30,
    "numero_motor": 30,
    "ano_modelo": 4,
    "default": 500,
}

# ================================================================================
# RETRY CONFIGURATION
# ================================================================================

RETRY_MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.1  # linear: delay * attempt

# ================================================================================
# CIRCUIT BREAKER
# ================================================================================

CIRCUIT_BREAKER_FAILURE_THRESHOLD = 3  # Open after 3 failures
CIRCUIT_BREAKER_RECOVERY_TIMEOUT_SECONDS = 60  # Retry after 60s

# ================================================================================
# MEMORY BACKEND
# ================================================================================

MEMORY_STORE_MAX_ENTRIES = 50000

# ================================================================================
# CONSOLIDATED
# ================================================================================

CONSTANTS = {
    "api_version": API_VERSION,
    "session_ttl_seconds": SESSION_TTL_SECONDS,
    "session_history_limit": SESSION_HISTORY_LIMIT,
    "dedup_window_seconds": DEDUP_WINDOW_SECONDS,
    "dedup_max_entries": DEDUP_MAX_ENTRIES,
    "rate_limit_user_points": RATE_LIMIT_USER_POINTS,
    "rate_limit_global_points": RATE_LIMIT_GLOBAL_POINTS,
    "rate_limit_state_points": RATE_LIMIT_STATE_POINTS,
    "lock_lease_ms": LOCK_LEASE_MS,
    "error_threshold_per_hour": ERROR_THRESHOLD_PER_HOUR,
    "suspension_seconds": SUSPENSION_SECONDS,
}
