"""
Core layer: state machine, session persistence, concurrency guards and
error recovery.

Only the exception hierarchy is re-exported here; import the components
from their modules (permit_session.core.session_store, ...).
"""

from permit_session.core.exceptions import (
    SessionEngineException,
    CorruptedStateError,
    InvalidStateError,
    RateLimitExceededError,
    StoreError,
    ValidationError,
)

__all__ = [
    "SessionEngineException",
    "CorruptedStateError",
    "InvalidStateError",
    "RateLimitExceededError",
    "StoreError",
    "ValidationError",
]
