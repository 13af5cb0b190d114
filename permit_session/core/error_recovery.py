# MERGED: 3 sections with separation comments
#│   │   ├── SECTION 1: Error classifier
#│   │   ├── SECTION 2: Error tracker (frequency + suspension)
#│   │   └── SECTION 3: Recovery policy
"""
================================================================================
FILE: permit_session/core/error_recovery.py
================================================================================

PURPOSE:
    Turns any failure raised while handling a message into a user-facing
    recovery script, and protects the system from identities that keep
    failing by suspending them for an hour.

WORKFLOW (RecoveryPolicy.handle):
    1. classify(error) → ErrorKind (InvalidStateError is re-raised)
    2. suspended identity → silence (the notice was already sent)
    3. record failure; more than 10 in the trailing hour → suspend and send
       the suspension notice once
    4. per-kind routine builds the replies (corrupted state also clears and
       re-seeds the session under the identity lock)
    5. replies delivered through the sender
    6. routine or delivery failed → last-resort send_direct

CLASSIFICATION ORDER:
    1. Exception type (CorruptedStateError, StoreError, RateLimitExceededError,
       ValidationError, transport/lock/extraction errors → ProcessingError)
    2. Message patterns:
       json / parsing / corrupt              → CORRUPTED_STATE
       redis / econnrefused / conn. refused  → STORE_FAILURE
       rate limit / too many                 → RATE_LIMIT_EXCEEDED
       validation / invalid                  → VALIDATION_ERROR
    3. Anything else                         → PROCESSING_ERROR

KEY FACTS:
    - Error records live in process memory only (lost on restart)
    - The tracker is bounded (max identities) and guarded by threading.Lock
    - Suspension ends lazily: the first check after expiry lifts it and
      forgets the identity's error record
    - Restore notices are asyncio tasks cancelled on shutdown
    - Every recovery message carries an ERR-<base36 time>-<5 chars> id

TESTING ENVIRONMENT:
    - Inject a fake clock; schedule_restore_notice=False keeps tests free of
      background tasks
"""

import asyncio
import logging
import math
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field as dataclass_field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from permit_session.config import constants
from permit_session.config.settings import Settings
from permit_session.core.distributed_lock import DistributedLock
from permit_session.core.exceptions import (
    CorruptedStateError,
    DeliveryError,
    ExtractionError,
    InvalidStateError,
    LockUnavailableError,
    ProcessingError,
    RateLimitExceededError,
    StoreError,
    ValidationError,
)
from permit_session.core.session_store import SessionStore
from permit_session.core.state_machine import StateMachine
from permit_session.pipeline import prompts
from permit_session.pipeline.schemas import (
    ErrorStatistics,
    OutboundMessage,
    StateType,
    parse_field_key,
)
from permit_session.providers.messaging.base import IMessageSender
from permit_session.utils.helpers import generate_error_id, mask_identity

logger = logging.getLogger(__name__)

# ================================================================================
# SECTION 1: ERROR CLASSIFIER
# ================================================================================

class ErrorKind(str, Enum):
    """Closed failure taxonomy"""
    CORRUPTED_STATE = "corrupted_state"
    STORE_FAILURE = "store_failure"
    VALIDATION_ERROR = "validation_error"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    PROCESSING_ERROR = "processing_error"


TYPE_KINDS = (
    (CorruptedStateError, ErrorKind.CORRUPTED_STATE),
    (StoreError, ErrorKind.STORE_FAILURE),
    (RateLimitExceededError, ErrorKind.RATE_LIMIT_EXCEEDED),
    (ValidationError, ErrorKind.VALIDATION_ERROR),
    ((ProcessingError, DeliveryError, LockUnavailableError, ExtractionError), ErrorKind.PROCESSING_ERROR),
)

MESSAGE_PATTERNS = (
    (("json", "parsing", "corrupt"), ErrorKind.CORRUPTED_STATE),
    (("redis", "econnrefused", "connection refused"), ErrorKind.STORE_FAILURE),
    (("rate limit", "too many"), ErrorKind.RATE_LIMIT_EXCEEDED),
    (("validation", "invalid"), ErrorKind.VALIDATION_ERROR),
)


class ErrorClassifier:
    """Maps a failure onto ErrorKind."""

    @staticmethod
    def classify(error: BaseException) -> ErrorKind:
        """
        Raises:
            InvalidStateError: never classified, always propagated
        """
        if isinstance(error, InvalidStateError):
            raise error

        for error_types, kind in TYPE_KINDS:
            if isinstance(error, error_types):
                return kind

        message = str(error).lower()
        for needles, kind in MESSAGE_PATTERNS:
            if any(needle in message for needle in needles):
                return kind
        return ErrorKind.PROCESSING_ERROR

# ================================================================================
# SECTION 2: ERROR TRACKER
# ================================================================================

class ErrorTracker:
    """Sliding-window failure counts and temporary suspensions per identity."""

    def __init__(
        self,
        threshold: int = constants.ERROR_THRESHOLD_PER_HOUR,
        window_seconds: float = constants.ERROR_WINDOW_SECONDS,
        suspension_seconds: float = constants.SUSPENSION_SECONDS,
        max_identities: int = constants.ERROR_TRACKER_MAX_IDENTITIES,
        clock: Callable[[], float] = time.time,
    ):
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.suspension_seconds = suspension_seconds
        self.max_identities = max_identities
        self._clock = clock
        self._errors: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._suspended: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _prune(self, timestamps: Deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def record(self, identity: str) -> bool:
        """Add one failure; True when it pushes the identity into suspension."""
        now = self._clock()
        with self._lock:
            timestamps = self._errors.get(identity)
            if timestamps is None:
                timestamps = deque()
                self._errors[identity] = timestamps
                while len(self._errors) > self.max_identities:
                    evicted, _ = self._errors.popitem(last=False)
                    logger.debug(f"Error tracker full, dropping {mask_identity(evicted)}")
            else:
                self._errors.move_to_end(identity)

            self._prune(timestamps, now)
            timestamps.append(now)

            if len(timestamps) > self.threshold:
                self._suspended[identity] = now + self.suspension_seconds
                logger.warning(
                    f"⚠️  Suspending {mask_identity(identity)} for {self.suspension_seconds:.0f}s "
                    f"({len(timestamps)} errors in window)"
                )
                return True
        return False

    def is_suspended(self, identity: str) -> bool:
        now = self._clock()
        with self._lock:
            until = self._suspended.get(identity)
            if until is None:
                return False
            if now < until:
                return True
            del self._suspended[identity]
            self._errors.pop(identity, None)
        logger.info(f"✓ Suspension lifted for {mask_identity(identity)}")
        return False

    def suspended_until(self, identity: str) -> Optional[float]:
        with self._lock:
            return self._suspended.get(identity)

    def error_count(self, identity: str) -> int:
        now = self._clock()
        with self._lock:
            timestamps = self._errors.get(identity)
            if not timestamps:
                return 0
            self._prune(timestamps, now)
            return len(timestamps)

    def cleanup(self) -> int:
        """Drop expired timestamps, empty records and finished suspensions."""
        now = self._clock()
        removed = 0
        with self._lock:
            for identity in list(self._errors):
                timestamps = self._errors[identity]
                self._prune(timestamps, now)
                if not timestamps and identity not in self._suspended:
                    del self._errors[identity]
                    removed += 1
            for identity, until in list(self._suspended.items()):
                if now >= until:
                    del self._suspended[identity]
                    self._errors.pop(identity, None)
        if removed:
            logger.debug(f"Error tracker cleanup removed {removed} identities")
        return removed

    def statistics(self) -> ErrorStatistics:
        now = self._clock()
        with self._lock:
            active = 0
            total = 0
            for timestamps in self._errors.values():
                self._prune(timestamps, now)
                if timestamps:
                    active += 1
                    total += len(timestamps)
        return ErrorStatistics(active_error_tracking=active, recent_error_total=total)

# ================================================================================
# SECTION 3: RECOVERY POLICY
# ================================================================================

@dataclass
class RecoveryOutcome:
    error_id: str
    kind: ErrorKind
    suspended: bool = False
    replies: List[OutboundMessage] = dataclass_field(default_factory=list)
    used_fallback: bool = False


Routine = Callable[[str, str, BaseException, Dict[str, Any]], Awaitable[List[OutboundMessage]]]


class RecoveryPolicy:
    """Picks and runs the recovery script for a failure."""

    def __init__(
        self,
        sender: IMessageSender,
        session_store: SessionStore,
        lock: DistributedLock,
        state_machine: StateMachine,
        settings: Optional[Settings] = None,
        tracker: Optional[ErrorTracker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.sender = sender
        self.session_store = session_store
        self.lock = lock
        self.state_machine = state_machine
        self.settings = settings or Settings()
        self._clock = clock
        self.classifier = ErrorClassifier()
        self.tracker = tracker or ErrorTracker(
            threshold=self.settings.error_threshold_per_hour,
            suspension_seconds=self.settings.suspension_seconds,
            clock=clock,
        )
        self._restore_tasks: Set[asyncio.Task] = set()
        self._routines: Dict[ErrorKind, Routine] = {
            ErrorKind.CORRUPTED_STATE: self._recover_corrupted_state,
            ErrorKind.STORE_FAILURE: self._recover_store_failure,
            ErrorKind.VALIDATION_ERROR: self._recover_validation,
            ErrorKind.RATE_LIMIT_EXCEEDED: self._recover_rate_limit,
            ErrorKind.PROCESSING_ERROR: self._recover_processing,
        }

    # ========================================================================
    # ENTRY POINT
    # ========================================================================

    def is_suspended(self, identity: str) -> bool:
        return self.tracker.is_suspended(identity)

    async def handle(
        self,
        identity: str,
        error: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> RecoveryOutcome:
        """
        Recover from one failure for one identity.

        Raises:
            InvalidStateError: propagated untouched
        """
        context = dict(context or {})
        kind = self.classifier.classify(error)
        error_id = generate_error_id(self._clock())

        log = logger.info if kind is ErrorKind.VALIDATION_ERROR else logger.error
        log(f"Recovery [{error_id}] {kind.value} for {mask_identity(identity)}: {error}")

        if self.tracker.is_suspended(identity):
            return RecoveryOutcome(error_id=error_id, kind=kind, suspended=True)

        if self.tracker.record(identity):
            notice = prompts.suspension_notice(
                error_id,
                self.settings.suspension_seconds / 3600,
                self.settings.support_email,
                self.settings.support_web_url,
            )
            used_fallback = not await self._send_direct(identity, notice, error_id)
            return RecoveryOutcome(
                error_id=error_id,
                kind=kind,
                suspended=True,
                replies=[OutboundMessage.plain(notice)],
                used_fallback=used_fallback,
            )

        try:
            replies = await self._routines[kind](identity, error_id, error, context)
            for reply in replies:
                await self.sender.send(identity, reply)
        except InvalidStateError:
            raise
        except Exception as e:
            logger.error(f"❌ Recovery routine {kind.value} failed [{error_id}]: {str(e)}", exc_info=True)
            await self._send_direct(
                identity,
                prompts.last_resort(error_id, self.settings.support_email, self.settings.support_web_url),
                error_id,
            )
            return RecoveryOutcome(error_id=error_id, kind=kind, used_fallback=True)

        return RecoveryOutcome(error_id=error_id, kind=kind, replies=replies)

    async def _send_direct(self, identity: str, text: str, error_id: str) -> bool:
        """Last-resort path: no session store, no rate limiter."""
        try:
            await self.sender.send_direct(identity, text)
            return True
        except Exception as e:
            logger.error(f"❌ Direct send failed [{error_id}] for {mask_identity(identity)}: {str(e)}")
            return False

    # ========================================================================
    # ROUTINES
    # ========================================================================

    async def _recover_corrupted_state(
        self,
        identity: str,
        error_id: str,
        error: BaseException,
        context: Dict[str, Any],
    ) -> List[OutboundMessage]:
        session = self.state_machine.create_state(identity, StateType.ERROR, "recovery")
        session.data.extra.update({
            "error_id": error_id,
            "options": ["recover", "restart", "support"],
        })
        async with self.lock.hold(identity):
            await self.session_store.clear(identity)
            await self.session_store.save(identity, session)
        return [prompts.recovery_corrupted(error_id)]

    async def _recover_store_failure(
        self,
        identity: str,
        error_id: str,
        error: BaseException,
        context: Dict[str, Any],
    ) -> List[OutboundMessage]:
        retry_count = int(context.get("retry_count", 0))
        wait_minutes = min(2 ** retry_count, self.settings.store_failure_backoff_cap_minutes)
        if (
            self.settings.schedule_restore_notice
            and retry_count < constants.STORE_FAILURE_RESTORE_NOTICE_MAX_RETRIES
        ):
            self._schedule_restore_notice(identity, wait_minutes * 60)
        return [prompts.recovery_store(error_id, wait_minutes, self.settings.support_web_url)]

    async def _recover_validation(
        self,
        identity: str,
        error_id: str,
        error: BaseException,
        context: Dict[str, Any],
    ) -> List[OutboundMessage]:
        field = parse_field_key(str(context.get("field") or getattr(error, "field", None) or ""))
        attempts = int(context.get("attempts") or getattr(error, "attempts", 0) or 0)
        # only engine validation errors carry user-facing text
        if isinstance(error, ValidationError) and error.message:
            message = error.message
        else:
            message = prompts.GENERIC_VALIDATION_MESSAGE
        return [
            prompts.recovery_validation(
                error_id, message, field, attempts, constants.ATTEMPTS_BEFORE_HELP
            )
        ]

    async def _recover_rate_limit(
        self,
        identity: str,
        error_id: str,
        error: BaseException,
        context: Dict[str, Any],
    ) -> List[OutboundMessage]:
        retry_after = getattr(error, "retry_after", None) or context.get("wait_seconds") or 60
        wait_seconds = max(1, int(math.ceil(float(retry_after))))
        return [prompts.recovery_rate_limit(error_id, wait_seconds, self.settings.support_web_url)]

    async def _recover_processing(
        self,
        identity: str,
        error_id: str,
        error: BaseException,
        context: Dict[str, Any],
    ) -> List[OutboundMessage]:
        return [
            prompts.recovery_processing(
                error_id, self.settings.support_email, self.settings.support_web_url
            )
        ]

    # ========================================================================
    # RESTORE NOTICES
    # ========================================================================

    def _schedule_restore_notice(self, identity: str, delay_seconds: float) -> None:
        task = asyncio.create_task(self._send_restore_notice(identity, delay_seconds))
        self._restore_tasks.add(task)
        task.add_done_callback(self._restore_tasks.discard)

    async def _send_restore_notice(self, identity: str, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        try:
            await self.sender.send(identity, prompts.recovery_restored())
        except DeliveryError as e:
            logger.warning(f"⚠️  Restore notice not delivered to {mask_identity(identity)}: {e}")

    # ========================================================================
    # MONITORING / LIFECYCLE
    # ========================================================================

    def get_statistics(self) -> ErrorStatistics:
        return self.tracker.statistics()

    def cleanup(self) -> int:
        return self.tracker.cleanup()

    @property
    def pending_restore_notices(self) -> int:
        return len(self._restore_tasks)

    async def shutdown(self) -> None:
        tasks = list(self._restore_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._restore_tasks.clear()
        logger.info(f"RecoveryPolicy shutdown ({len(tasks)} restore notices cancelled)")
