"""
================================================================================
FILE: permit_session/pipeline/dialogue.py
================================================================================

PURPOSE:
    Decides what one message does to a Session: the next state, the field
    mutations and the replies. Works on in-memory values only; the engine
    holds the identity lock and persists the outcome.

WORKFLOW (apply):
    1. field_edit "cancelar" → back to the confirmation (edit abandoned)
    2. global commands (menu, help, back, cancel, restart, /permiso, /estado)
    3. help exit ("continue" / "back")
    4. vocabulary check → ValidationIssue when the input is not accepted
    5. per-state handler (idle, form, confirmation, field edit, payment)
    6. declarative menu routes
    7. anything else → root menu

KEY FACTS:
    - Rejected field values never reach the session; they only increment
      the attempt counter and produce a ValidationIssue
    - The recovery policy answers issues; the dialogue sends no reply of
      its own for them
    - data.extra is state-scoped and cleared on every navigation
"""

import logging
import re
from dataclasses import dataclass, field as dataclass_field
from typing import Callable, Dict, List, Optional, Tuple

from permit_session.config.settings import Settings
from permit_session.core.security import SecurityValidator
from permit_session.core.session_store import SessionStore
from permit_session.core.state_machine import ROOT_STATE, StateMachine
from permit_session.pipeline import prompts
from permit_session.pipeline.schemas import (
    FIELD_ORDER,
    ExtractionRequest,
    ExtractionResult,
    FieldKey,
    Intent,
    OutboundMessage,
    Session,
    StateType,
    ValidationIssue,
    parse_field_key,
)

logger = logging.getLogger(__name__)

EDITING_FIELD_KEY = "editing_field"
RECOVERY_FIELD_KEY = "recovery_field"

HELP_EXIT_TOKENS = ("continue", "back")
FORM_LOCAL_TOKENS = ("back", "save")
RECOVERY_CHOICES = ("1", "2", "3")
EXTRACTING_STATES = ("form:new_permit", "form:field_edit")

EDIT_CHOICE = re.compile(r"^(\d{1,2})(?:\s*[.:)\-]?\s+(.+))?$", re.DOTALL)


@dataclass
class DialogueOutcome:
    session: Session
    replies: List[OutboundMessage] = dataclass_field(default_factory=list)
    issues: List[ValidationIssue] = dataclass_field(default_factory=list)
    clear: bool = False


class DialogueFlow:
    """Per-state input handling for the permit intake."""

    def __init__(
        self,
        state_machine: StateMachine,
        session_store: SessionStore,
        validator: SecurityValidator,
        settings: Optional[Settings] = None,
    ):
        self.state_machine = state_machine
        self.session_store = session_store
        self.validator = validator
        self.settings = settings or Settings()

        self._handlers: Dict[str, Callable[..., DialogueOutcome]] = {
            "idle": self._on_idle,
            "form:new_permit": self._on_new_permit,
            "form:field_edit": self._on_field_edit,
            "confirmation:permit_data": self._on_confirmation,
            "confirmation:payment": self._on_payment,
        }
        self._entry_prompts: Dict[str, Callable[[Session], OutboundMessage]] = {
            "menu:main": lambda s: prompts.main_menu(),
            "menu:renewal": lambda s: prompts.renewal_menu(),
            "menu:privacy": lambda s: prompts.privacy_menu(),
            "status:checking": lambda s: prompts.status_report(self.session_store.check_completion(s)),
            "confirmation:permit_data": prompts.confirmation_summary,
            "confirmation:payment": lambda s: prompts.payment_pending(),
            "form:field_edit": lambda s: prompts.field_edit_menu(),
            "error:recovery": lambda s: prompts.recovery_menu(s.data.extra.get("error_id")),
        }

    # ========================================================================
    # EXTRACTION HOOK (runs before the lock)
    # ========================================================================

    def extraction_request(self, session: Session, text: str) -> Optional[ExtractionRequest]:
        """Request for the extractor, or None when this input needs none."""
        key = session.state_key
        token = text.strip().lower()
        if key not in EXTRACTING_STATES or not token:
            return None
        if self.state_machine.resolve_global_command(text) or token in FORM_LOCAL_TOKENS:
            return None

        if key == "form:new_permit":
            if session.data.extra.get(RECOVERY_FIELD_KEY) and token in RECOVERY_CHOICES:
                return None
            expected = self.session_store.next_missing_field(session)
        else:
            expected = self._editing_field(session)
            if expected is None:
                return None

        return ExtractionRequest(
            raw_text=text,
            current_state_key=key,
            expected_field=expected,
            collected_data=session.data.collected(),
        )

    # ========================================================================
    # ENTRY POINT
    # ========================================================================

    def apply(
        self,
        session: Session,
        text: str,
        extraction: Optional[ExtractionResult] = None,
    ) -> DialogueOutcome:
        session = session.model_copy(deep=True)
        token = text.strip().lower()

        if session.state_key == "form:field_edit" and token == "cancelar":
            return self._enter(self._move(session, StateType.CONFIRMATION, "permit_data"))

        action = self.state_machine.resolve_global_command(text)
        if action:
            logger.debug(f"Global command '{action}' in {session.state_key}")
            return self._global(session, action)

        if session.state_type is StateType.HELP and token in HELP_EXIT_TOKENS:
            return self._enter(self.state_machine.exit_help(session))

        if not self.state_machine.is_valid_input(session, text):
            expected = self.state_machine.expected_inputs(session.state_key)
            return DialogueOutcome(
                session,
                issues=[ValidationIssue(message=prompts.invalid_option(expected))],
            )

        handler = self._handlers.get(session.state_key)
        if handler is not None:
            return handler(session, text, extraction)

        target = self.state_machine.route(session, token)
        if target is not None:
            return self._enter(self._move(session, *target))

        return self._unhandled(session)

    # ========================================================================
    # NAVIGATION HELPERS
    # ========================================================================

    def _move(self, session: Session, state_type: StateType, context: Optional[str]) -> Session:
        moved = self.state_machine.transition(session, state_type, context)
        moved.data.extra.clear()
        return moved

    def _enter(
        self,
        session: Session,
        replies: Optional[List[OutboundMessage]] = None,
    ) -> DialogueOutcome:
        """Outcome for arriving in session's state, with its entry prompt."""
        replies = list(replies or [])
        key = session.state_key

        if session.state_type is StateType.IDLE:
            session = self._move(session, *ROOT_STATE)
            replies.append(prompts.main_menu())
        elif key == "form:new_permit":
            missing = self.session_store.next_missing_field(session)
            if missing is None:
                session = self._move(session, StateType.CONFIRMATION, "permit_data")
                replies.append(prompts.confirmation_summary(session))
            else:
                replies.append(prompts.ask_field(missing, self.session_store.check_completion(session)))
        elif session.state_type is StateType.HELP:
            replies.append(
                prompts.help_text(
                    session.state_context,
                    self.settings.support_email,
                    self.settings.support_web_url,
                )
            )
        elif key in self._entry_prompts:
            replies.append(self._entry_prompts[key](session))
        else:
            return self._unhandled(session, replies)

        return DialogueOutcome(session, replies)

    def _unhandled(
        self,
        session: Session,
        replies: Optional[List[OutboundMessage]] = None,
    ) -> DialogueOutcome:
        """States served outside this channel send the user to the root menu."""
        replies = list(replies or [])
        if session.state_type is not StateType.ERROR:
            replies.append(prompts.portal_only(self.settings.support_web_url))
        session = self._move(session, *ROOT_STATE)
        replies.append(prompts.main_menu())
        return DialogueOutcome(session, replies)

    def _global(self, session: Session, action: str) -> DialogueOutcome:
        if action == "menu":
            moved = self._move(session, *ROOT_STATE).model_copy(update={"return_to": None})
            return self._enter(moved)

        if action == "help":
            if session.state_type is StateType.FORM:
                help_context = "form_help"
            elif session.state_key == "confirmation:payment":
                help_context = "payment_help"
            else:
                help_context = "general"
            return self._enter(self.state_machine.enter_help(session, help_context))

        if action == "back":
            if session.state_type is StateType.HELP:
                return self._enter(self.state_machine.exit_help(session))
            previous = self.state_machine.navigate_back(session)
            previous.data.extra.clear()
            return self._enter(previous)

        if action == "cancel":
            logger.info(f"Application cancelled from {session.state_key}")
            return DialogueOutcome(
                Session.new(session.identity),
                replies=[prompts.cancelled()],
                clear=True,
            )

        if action == "restart":
            fresh = self.state_machine.create_state(session.identity, *ROOT_STATE)
            return self._enter(fresh)

        if action == "new_permit":
            return self._enter(self._move(session, StateType.FORM, "new_permit"))

        if action == "status":
            return self._enter(self._move(session, StateType.STATUS, "checking"))

        logger.warning(f"Unknown global action '{action}'")
        return self._unhandled(session)

    # ========================================================================
    # STATE HANDLERS
    # ========================================================================

    def _on_idle(self, session: Session, text: str, extraction: Optional[ExtractionResult]) -> DialogueOutcome:
        session = self._move(session, *ROOT_STATE)
        return DialogueOutcome(session, [prompts.welcome(), prompts.main_menu()])

    def _on_new_permit(
        self,
        session: Session,
        text: str,
        extraction: Optional[ExtractionResult],
    ) -> DialogueOutcome:
        token = text.strip().lower()
        if token == "back":
            previous = self.state_machine.navigate_back(session)
            previous.data.extra.clear()
            return self._enter(previous)
        if token == "save":
            return DialogueOutcome(session, [prompts.progress_saved()])

        pending = parse_field_key(session.data.extra.pop(RECOVERY_FIELD_KEY, None) or "")
        if pending is not None and token in RECOVERY_CHOICES:
            if token == "1":
                return DialogueOutcome(session, [prompts.more_examples(pending)])
            if token == "2":
                return DialogueOutcome(
                    session,
                    [prompts.support_contact(self.settings.support_email, self.settings.support_web_url)],
                )
            return DialogueOutcome(session, [prompts.ask_field(pending)])

        if extraction is not None and extraction.intent is Intent.CANCELLING:
            return self._global(session, "cancel")

        expected = self.session_store.next_missing_field(session)
        if extraction is not None and extraction.intent is Intent.ASKING_QUESTION:
            return self._answer_question(session, extraction, expected)

        candidates = self._candidates(extraction)

        if not candidates:
            if extraction is not None and extraction.validation_errors:
                return self._extractor_issue(session, extraction, expected)
            if extraction is not None and extraction.clarification_question:
                return DialogueOutcome(session, [OutboundMessage.plain(extraction.clarification_question)])
            if expected is None:
                return self._enter(session)
            candidates = {expected: text}

        accepted, issues = self._apply_candidates(session, candidates)
        replies = [prompts.fields_saved(accepted)] if len(accepted) > 1 else []
        if issues:
            if issues[0].field is not None:
                session.data.extra[RECOVERY_FIELD_KEY] = issues[0].field.value
            return DialogueOutcome(session, replies, issues)
        return self._enter(session, replies)

    def _on_confirmation(
        self,
        session: Session,
        text: str,
        extraction: Optional[ExtractionResult],
    ) -> DialogueOutcome:
        token = text.strip().lower()
        if token in ("1", "confirmar"):
            return self._enter(self._move(session, StateType.CONFIRMATION, "payment"))
        if token in ("2", "editar"):
            moved = self._move(session, StateType.FORM, "field_edit")
            moved.data.extra[EDITING_FIELD_KEY] = None
            return self._enter(moved)
        return self._global(session, "cancel")

    def _on_payment(
        self,
        session: Session,
        text: str,
        extraction: Optional[ExtractionResult],
    ) -> DialogueOutcome:
        token = text.strip().lower()
        if token in ("1", "pagar"):
            return DialogueOutcome(session, [prompts.payment_requested()])
        return self._enter(self._move(session, *ROOT_STATE))

    def _on_field_edit(
        self,
        session: Session,
        text: str,
        extraction: Optional[ExtractionResult],
    ) -> DialogueOutcome:
        stripped = text.strip()
        if stripped.lower() == "back":
            previous = self.state_machine.navigate_back(session)
            previous.data.extra.clear()
            return self._enter(previous)

        editing = self._editing_field(session)
        if editing is not None:
            value = stripped
            if extraction is not None:
                value = extraction.extracted_fields.get(editing.value, stripped)
            return self._apply_edit(session, editing, value)

        match = EDIT_CHOICE.match(stripped)
        index = int(match.group(1)) if match else 0
        if not 1 <= index <= len(FIELD_ORDER):
            return DialogueOutcome(
                session,
                issues=[ValidationIssue(message=f"Elige un número del 1 al {len(FIELD_ORDER)}")],
            )

        chosen = FIELD_ORDER[index - 1]
        if match.group(2):
            return self._apply_edit(session, chosen, match.group(2))

        session.data.extra[EDITING_FIELD_KEY] = chosen.value
        return DialogueOutcome(session, [prompts.ask_field(chosen)])

    # ========================================================================
    # FIELD HELPERS
    # ========================================================================

    @staticmethod
    def _editing_field(session: Session) -> Optional[FieldKey]:
        return parse_field_key(session.data.extra.get(EDITING_FIELD_KEY) or "")

    @staticmethod
    def _candidates(extraction: Optional[ExtractionResult]) -> Dict[FieldKey, str]:
        if extraction is None:
            return {}
        candidates: Dict[FieldKey, str] = {}
        for name, value in extraction.extracted_fields.items():
            field = parse_field_key(name)
            if field is not None and value:
                candidates[field] = value
        return candidates

    def _apply_candidates(
        self,
        session: Session,
        candidates: Dict[FieldKey, str],
    ) -> Tuple[List[FieldKey], List[ValidationIssue]]:
        accepted: List[FieldKey] = []
        issues: List[ValidationIssue] = []
        for field, value in candidates.items():
            result = self.validator.validate_field(field, value)
            if result.valid:
                self.session_store.apply_field(session, field, result.sanitized_value)
                self.session_store.apply_completed(session, field)
                session.attempts.pop(field, None)
                accepted.append(field)
                logger.info(
                    f"Field {field.value} accepted: "
                    f"{self.validator.mask_field_value(field, result.sanitized_value)}"
                )
            else:
                attempts = self.session_store.apply_attempt(session, field)
                issues.append(ValidationIssue(field=field, message=result.error, attempts=attempts))
                logger.info(f"Field {field.value} rejected (attempt {attempts}): {result.error}")
        return accepted, issues

    def _apply_edit(self, session: Session, field: FieldKey, value: str) -> DialogueOutcome:
        accepted, issues = self._apply_candidates(session, {field: value})
        if issues:
            session.data.extra[EDITING_FIELD_KEY] = field.value
            return DialogueOutcome(session, issues=issues)
        moved = self._move(session, StateType.CONFIRMATION, "permit_data")
        return self._enter(moved, [prompts.fields_saved(accepted)])

    def _extractor_issue(
        self,
        session: Session,
        extraction: ExtractionResult,
        expected: Optional[FieldKey],
    ) -> DialogueOutcome:
        reported = extraction.validation_errors[0]
        field = parse_field_key(reported.field or "") or expected
        message = reported.error
        if reported.suggestion:
            message = f"{message}\n{reported.suggestion}"
        attempts = self.session_store.apply_attempt(session, field) if field is not None else 0
        if field is not None:
            session.data.extra[RECOVERY_FIELD_KEY] = field.value
        return DialogueOutcome(
            session,
            issues=[ValidationIssue(field=field, message=message, attempts=attempts)],
        )

    def _answer_question(
        self,
        session: Session,
        extraction: ExtractionResult,
        expected: Optional[FieldKey],
    ) -> DialogueOutcome:
        """A question is answered, never stored as a field value."""
        if extraction.clarification_question:
            replies = [OutboundMessage.plain(extraction.clarification_question)]
        else:
            replies = [prompts.support_contact(self.settings.support_email, self.settings.support_web_url)]
        if expected is not None:
            replies.append(prompts.ask_field(expected))
        return DialogueOutcome(session, replies)
