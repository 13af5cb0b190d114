# Session persistence
"""
================================================================================
FILE: permit_session/core/session_store.py
================================================================================

PURPOSE:
    Loads, saves and clears the per-identity Session record in the key-value
    store, and provides the field-level helpers the dialogue uses (set a
    field, mark it completed, count attempts, completion progress).

WORKFLOW:
    load(identity):
        1. GET wa_enhanced_state:{identity}
        2. missing → fresh idle Session
        3. undecodable / unknown state type / invalid context → delete the
           record, log, fresh idle Session
        4. store unreachable → log, fresh idle Session (never raises)
        inspect() is the same, also reporting whether a record was discarded;
        inspect(strict=True) lets StoreError through (read-modify-write paths)
        peek() reads without deleting anything (used outside the lock)

    save(identity, session):
        1. stamp last_activity_at
        2. SETEX with the full session TTL (every save resets the TTL)
        3. StoreError propagates after the backend's own retries

    clear(identity):
        - best effort DEL; failures are logged

KEY FACTS:
    - Only call save/clear while holding the identity lock
    - Field helpers mutate an in-memory Session; the caller saves it
    - completed_fields stays unique; attempts count per field

TESTING ENVIRONMENT:
    - SessionStore(MemoryStoreBackend(clock=fake), settings, clock=fake)
"""

import logging
import time
from typing import Callable, NamedTuple, Optional

from pydantic import ValidationError as PydanticValidationError

from permit_session.config.settings import Settings
from permit_session.config.store_config import StoreKeyPattern
from permit_session.core.exceptions import CorruptedStateError, InvalidStateError, StoreError
from permit_session.pipeline.schemas import (
    FIELD_GROUPS,
    FIELD_ORDER,
    PERSONAL_FIELDS,
    VEHICLE_FIELDS,
    CompletionStatus,
    FieldGroup,
    FieldKey,
    Session,
    utc_from_timestamp,
)
from permit_session.providers.store.base import IStoreBackend
from permit_session.utils.helpers import mask_identity

logger = logging.getLogger(__name__)


class LoadResult(NamedTuple):
    session: Session
    discarded: bool


class SessionStore:
    """Session persistence on top of an IStoreBackend."""

    def __init__(
        self,
        backend: IStoreBackend,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.settings = settings or Settings()
        self._clock = clock
        self.ttl_seconds = self.settings.session_ttl_seconds

    # ========================================================================
    # RECORD LIFECYCLE
    # ========================================================================

    def decode(self, identity: str, raw: str) -> Session:
        """
        Parse a stored record.

        Raises:
            CorruptedStateError: record is not a valid Session
        """
        try:
            session = Session.model_validate_json(raw)
        except (PydanticValidationError, InvalidStateError, ValueError) as e:
            raise CorruptedStateError(
                f"Session record could not be parsed: {str(e)[:200]}",
                context={"identity": mask_identity(identity)},
            )
        if session.identity != identity:
            raise CorruptedStateError(
                "Session record belongs to a different identity",
                context={"identity": mask_identity(identity)},
            )
        return session

    async def load(self, identity: str) -> Session:
        """Stored Session, or a fresh idle one. Never raises."""
        result = await self.inspect(identity)
        return result.session

    async def inspect(self, identity: str, strict: bool = False) -> LoadResult:
        """
        load() that also reports whether an invalid record was discarded.

        Args:
            strict: re-raise store failures instead of starting idle. Callers
                that write the session back must pass True.

        Raises:
            StoreError: store unreachable after retries (strict only)
        """
        key = StoreKeyPattern.session_key(identity)
        try:
            raw = await self.backend.get(key)
        except StoreError as e:
            if strict:
                raise
            logger.error(f"Session load failed for {mask_identity(identity)}, starting idle: {e}")
            return LoadResult(Session.new(identity, now=self._clock()), False)

        if raw is None:
            return LoadResult(Session.new(identity, now=self._clock()), False)

        try:
            return LoadResult(self.decode(identity, raw), False)
        except CorruptedStateError as e:
            logger.warning(f"Discarding invalid session for {mask_identity(identity)}: {e.message}")
            try:
                await self.backend.delete(key)
            except StoreError as delete_error:
                logger.error(f"Could not delete invalid session record: {delete_error}")
            return LoadResult(Session.new(identity, now=self._clock()), True)

    async def peek(self, identity: str) -> Session:
        """Read-only load: invalid or unreachable records read as idle, nothing is deleted."""
        try:
            raw = await self.backend.get(StoreKeyPattern.session_key(identity))
            if raw is not None:
                return self.decode(identity, raw)
        except (StoreError, CorruptedStateError) as e:
            logger.debug(f"Session peek for {mask_identity(identity)} fell back to idle: {e}")
        return Session.new(identity, now=self._clock())

    async def save(self, identity: str, session: Session) -> Session:
        """
        Persist the session with a full TTL.

        Raises:
            StoreError: store unreachable after retries
        """
        stamped = session.model_copy(
            update={"last_activity_at": utc_from_timestamp(self._clock())}
        )
        await self.backend.set(
            StoreKeyPattern.session_key(identity),
            stamped.model_dump_json(),
            self.ttl_seconds,
        )
        logger.debug(f"Session saved for {mask_identity(identity)} in {stamped.state_key}")
        return stamped

    async def clear(self, identity: str) -> bool:
        """Delete the session record (best effort)."""
        try:
            removed = await self.backend.delete(StoreKeyPattern.session_key(identity))
            logger.info(f"Session cleared for {mask_identity(identity)}")
            return removed
        except StoreError as e:
            logger.error(f"Session clear failed for {mask_identity(identity)}: {e}")
            return False

    # ========================================================================
    # READ-MODIFY-WRITE HELPERS (caller holds the identity lock)
    # ========================================================================

    async def _load_for_update(self, identity: str) -> Session:
        return (await self.inspect(identity, strict=True)).session

    async def set_field(
        self,
        identity: str,
        field: FieldKey,
        value: str,
        group: Optional[FieldGroup] = None,
    ) -> Session:
        session = await self._load_for_update(identity)
        self.apply_field(session, field, value, group)
        return await self.save(identity, session)

    async def mark_completed(self, identity: str, field: FieldKey) -> Session:
        session = await self._load_for_update(identity)
        self.apply_completed(session, field)
        return await self.save(identity, session)

    async def record_attempt(self, identity: str, field: FieldKey) -> int:
        session = await self._load_for_update(identity)
        count = self.apply_attempt(session, field)
        await self.save(identity, session)
        return count

    async def store_application_id(self, identity: str, application_id: str) -> Session:
        session = await self._load_for_update(identity)
        session.application_id = str(application_id)
        return await self.save(identity, session)

    async def store_payment_info(self, identity: str, payment_info: dict) -> Session:
        session = await self._load_for_update(identity)
        session.payment_info = dict(payment_info)
        return await self.save(identity, session)

    # ========================================================================
    # IN-MEMORY MUTATORS (used inside a critical section before one save)
    # ========================================================================

    @staticmethod
    def apply_field(
        session: Session,
        field: FieldKey,
        value: str,
        group: Optional[FieldGroup] = None,
    ) -> None:
        """Write one field value into its group."""
        field = FieldKey(field)
        if group is not None and FieldGroup(group) is not FIELD_GROUPS[field]:
            raise ValueError(f"Field {field.value} does not belong to group {FieldGroup(group).value}")
        session.data.set_field(field, value)

    @staticmethod
    def apply_completed(session: Session, field: FieldKey) -> None:
        """Add field to completed_fields once."""
        field = FieldKey(field)
        if field not in session.completed_fields:
            session.completed_fields.append(field)

    @staticmethod
    def apply_attempt(session: Session, field: FieldKey) -> int:
        """Increment and return the attempt count for a field."""
        field = FieldKey(field)
        session.attempts[field] = session.attempts.get(field, 0) + 1
        return session.attempts[field]

    # ========================================================================
    # PROGRESS
    # ========================================================================

    @staticmethod
    def _is_complete(session: Session, field: FieldKey) -> bool:
        return field in session.completed_fields and bool(session.data.get_field(field))

    def next_missing_field(self, session: Session) -> Optional[FieldKey]:
        """First required field not yet completed, in ask order."""
        for field in FIELD_ORDER:
            if not self._is_complete(session, field):
                return field
        return None

    def check_completion(self, session: Session) -> CompletionStatus:
        missing_personal = [f for f in PERSONAL_FIELDS if not self._is_complete(session, f)]
        missing_vehicle = [f for f in VEHICLE_FIELDS if not self._is_complete(session, f)]
        completed = len(FIELD_ORDER) - len(missing_personal) - len(missing_vehicle)
        return CompletionStatus(
            personal_complete=not missing_personal,
            vehicle_complete=not missing_vehicle,
            is_complete=not missing_personal and not missing_vehicle,
            missing_personal=missing_personal,
            missing_vehicle=missing_vehicle,
            completed=completed,
            total=len(FIELD_ORDER),
        )
