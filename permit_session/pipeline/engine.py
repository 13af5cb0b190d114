# Per-message orchestration
"""
================================================================================
FILE: permit_session/pipeline/engine.py
================================================================================

PURPOSE:
    Entry point for every inbound message. Runs the protective checks, the
    extraction call, the locked read-modify-write of the Session and the
    outbound replies, and hands every failure to the Recovery Policy.

WORKFLOW (handle_message):
    1. normalize identity; suspended → SUSPENDED, no replies
    2. provider message id already processed → DUPLICATE
    3. fingerprint seen in the same second → DUPLICATE
    4. global, then per-user rate limit
    5. normalize text (control/zero-width chars, length cap)
    6. peek the session (no lock, no delete); run extraction when the
       state collects fields
    7. hold the identity lock:
         load (corrupt record → CORRUPTED_STATE recovery) → per-state
         rate limit → dialogue → save / clear
    8. send replies (after the lock is released)
    9. first validation issue → Recovery Policy (re-prompt script)
   10. any failure in 4-9 → Recovery Policy → RECOVERED

KEY FACTS:
    - The lock is never held across the extraction call or message delivery
    - The per-state limit is charged inside the lock, to the state actually
      being mutated
    - InvalidStateError is a bug and propagates to the caller
    - run_maintenance() sweeps the dedup cache, the error tracker and the
      in-memory store; start_maintenance() runs it periodically
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from permit_session.config.settings import Settings
from permit_session.core.deduplicator import Deduplicator, ProcessedMessageRegistry
from permit_session.core.distributed_lock import DistributedLock
from permit_session.core.error_recovery import RecoveryOutcome, RecoveryPolicy
from permit_session.core.exceptions import CorruptedStateError, InvalidStateError, ValidationError
from permit_session.core.rate_limiter import RateLimiter, state_subject
from permit_session.core.security import SecurityValidator
from permit_session.core.session_store import SessionStore
from permit_session.pipeline.dialogue import DialogueFlow, DialogueOutcome
from permit_session.pipeline.extraction import ExtractionService
from permit_session.pipeline.schemas import (
    EngineResult,
    EngineStatus,
    ExtractionResult,
    InboundMessage,
    OutboundMessage,
    RateLimitScope,
    ValidationIssue,
)
from permit_session.providers.messaging.base import IMessageSender
from permit_session.providers.store.memory import MemoryStoreBackend
from permit_session.utils.helpers import mask_identity, normalize_identity

logger = logging.getLogger(__name__)


class ConversationEngine:
    """Processes one inbound message at a time per identity."""

    def __init__(
        self,
        session_store: SessionStore,
        dialogue: DialogueFlow,
        extraction: ExtractionService,
        deduplicator: Deduplicator,
        registry: ProcessedMessageRegistry,
        rate_limiter: RateLimiter,
        lock: DistributedLock,
        validator: SecurityValidator,
        recovery: RecoveryPolicy,
        sender: IMessageSender,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session_store = session_store
        self.dialogue = dialogue
        self.extraction = extraction
        self.deduplicator = deduplicator
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.lock = lock
        self.validator = validator
        self.recovery = recovery
        self.sender = sender
        self.settings = settings or Settings()
        self._clock = clock
        self._maintenance_task: Optional[asyncio.Task] = None

        logger.info("✓ ConversationEngine initialized")

    # ========================================================================
    # MESSAGE HANDLING
    # ========================================================================

    async def handle_message(self, message: InboundMessage) -> EngineResult:
        """
        Process one inbound message end to end.

        Raises:
            InvalidStateError: invalid state pairing (programming error)
        """
        identity = normalize_identity(message.identity)
        now = message.received_at if message.received_at is not None else self._clock()

        if self.recovery.is_suspended(identity):
            logger.info(f"Message from suspended identity {mask_identity(identity)} ignored")
            return EngineResult(status=EngineStatus.SUSPENDED)

        if await self.registry.is_processed(message.message_id):
            return EngineResult(status=EngineStatus.DUPLICATE)

        if self.deduplicator.is_duplicate(identity, message.text, now):
            logger.info(f"Duplicate message from {mask_identity(identity)} within the same second")
            return EngineResult(status=EngineStatus.DUPLICATE)

        if message.message_id:
            await self.sender.mark_read(message.message_id)

        try:
            return await self._process(identity, message.text)
        except InvalidStateError:
            raise
        except Exception as e:
            context = {
                "stage": "processing",
                "retry_count": self.recovery.tracker.error_count(identity),
            }
            outcome = await self.recovery.handle(identity, e, context=context)
            return self._recovered(outcome)

    async def _process(self, identity: str, raw_text: str) -> EngineResult:
        await self.rate_limiter.enforce(RateLimitScope.GLOBAL)
        await self.rate_limiter.enforce(RateLimitScope.USER, identity)

        text = self.validator.normalize(raw_text)
        extraction = await self._extract(identity, text)

        async with self.lock.hold(identity):
            session, discarded = await self.session_store.inspect(identity, strict=True)
            if discarded:
                raise CorruptedStateError(
                    "Stored session was corrupt and has been discarded",
                    context={"identity": mask_identity(identity)},
                )
            await self.rate_limiter.enforce(
                RateLimitScope.STATE, state_subject(identity, session.state_key)
            )
            outcome = self.dialogue.apply(session, text, extraction)
            state_key = await self._persist(identity, outcome)

        await self._deliver(identity, outcome.replies)

        result = EngineResult(
            status=EngineStatus.PROCESSED,
            state_key=state_key,
            replies=list(outcome.replies),
        )
        if outcome.issues:
            recovered = await self._report_issue(identity, outcome.issues[0], state_key)
            result.replies.extend(recovered.replies)
            result.error_id = recovered.error_id
            result.error_kind = recovered.kind.value
            if recovered.suspended:
                result.status = EngineStatus.SUSPENDED
        return result

    async def _extract(self, identity: str, text: str) -> Optional[ExtractionResult]:
        """Extraction on a lock-free snapshot of the session."""
        snapshot = await self.session_store.peek(identity)
        request = self.dialogue.extraction_request(snapshot, text)
        if request is None:
            return None
        return await self.extraction.extract(request)

    async def _persist(self, identity: str, outcome: DialogueOutcome) -> Optional[str]:
        if outcome.clear:
            await self.session_store.clear(identity)
            return None
        saved = await self.session_store.save(identity, outcome.session)
        return saved.state_key

    async def _deliver(self, identity: str, replies: List[OutboundMessage]) -> None:
        for reply in replies:
            await self.sender.send(identity, reply)

    async def _report_issue(
        self,
        identity: str,
        issue: ValidationIssue,
        state_key: Optional[str],
    ) -> RecoveryOutcome:
        error = ValidationError(
            issue.message,
            field=issue.field.value if issue.field is not None else None,
            attempts=issue.attempts,
        )
        return await self.recovery.handle(identity, error, context={"state_key": state_key})

    @staticmethod
    def _recovered(outcome: RecoveryOutcome) -> EngineResult:
        return EngineResult(
            status=EngineStatus.SUSPENDED if outcome.suspended else EngineStatus.RECOVERED,
            replies=list(outcome.replies),
            error_id=outcome.error_id,
            error_kind=outcome.kind.value,
        )

    # ========================================================================
    # MAINTENANCE
    # ========================================================================

    def run_maintenance(self) -> Dict[str, Any]:
        """One sweep over every bounded in-process structure."""
        swept = {
            "dedup_evicted": self.deduplicator.sweep(),
            "error_records_removed": self.recovery.cleanup(),
            "store_entries_purged": 0,
        }
        if isinstance(self.session_store.backend, MemoryStoreBackend):
            swept["store_entries_purged"] = self.session_store.backend.purge_expired()
        logger.debug(f"Maintenance sweep: {swept}")
        return swept

    async def _maintenance_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.run_maintenance()

    def start_maintenance(self, interval: Optional[float] = None) -> None:
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return
        period = interval or self.settings.dedup_sweep_interval_seconds
        self._maintenance_task = asyncio.create_task(self._maintenance_loop(period))
        logger.info(f"✓ Maintenance task started (every {period}s)")

    async def shutdown(self) -> None:
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None
        await self.recovery.shutdown()
        logger.info("ConversationEngine shutdown")
