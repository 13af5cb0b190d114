"""
================================================================================
FILE: permit_session/config/store_config.py
================================================================================

PURPOSE:
    Store key namespaces and TTLs. Every key the engine writes to the
    key-value store is built here so namespaces never collide.

KEY NAMESPACES:
    - Session record: "wa_enhanced_state:{identity}"
    - Identity lock:  "lock:wa:{identity}"
    - Message marker: "whatsapp:dedup:{message_id}"
    - Rate counters:  "rl:{scope}:{subject}:{window_start}"

KEY FACTS:
    - Rate counter keys are rendered from a structured bucket at the store
      edge and never parsed back
    - TTLs here are defaults; Settings may override them
"""

# ================================================================================
# STORE KEY PATTERNS
# ================================================================================

class StoreKeyPattern:
    """Store key pattern templates"""

    SESSION = "wa_enhanced_state:{identity}"
    LOCK = "lock:wa:{identity}"
    MESSAGE_MARKER = "whatsapp:dedup:{message_id}"
    RATE_COUNTER = "rl:{scope}:{subject}:{window_start}"

    @staticmethod
    def is_lock_key(key: str) -> bool:
        return key.startswith(StoreKeyPattern.LOCK.split("{")[0])

    @staticmethod
    def is_session_key(key: str) -> bool:
        return key.startswith(StoreKeyPattern.SESSION.split("{")[0])

    @staticmethod
    def session_key(identity: str) -> str:
        """Generate session record key"""
        return StoreKeyPattern.SESSION.format(identity=identity)

    @staticmethod
    def lock_key(identity: str) -> str:
        """Generate per-identity lock key"""
        return StoreKeyPattern.LOCK.format(identity=identity)

    @staticmethod
    def message_marker_key(message_id: str) -> str:
        """Generate provider message-id marker key"""
        return StoreKeyPattern.MESSAGE_MARKER.format(message_id=message_id)

    @staticmethod
    def rate_counter_key(scope: str, subject: str, window_start: int) -> str:
        """Generate fixed-window rate counter key"""
        return StoreKeyPattern.RATE_COUNTER.format(
            scope=scope, subject=subject, window_start=window_start
        )


# ================================================================================
# STORE TTL CONFIGURATION (seconds)
# ================================================================================

class StoreTTL:
    """Store TTL values"""

    SESSION_DEFAULT = 86400  # 24 hours
    MESSAGE_MARKER = 3600  # 1 hour
    LOCK_LEASE_MS = 5000
