# Conversation states
"""
================================================================================
FILE: permit_session/core/state_machine.py
================================================================================

PURPOSE:
    Owns the allowed (type, context) pairs, the per-state input vocabulary,
    the breadcrumb labels and every transition a Session can take. All
    operations are pure: they take a Session and return a new one, leaving
    persistence to the Session Store.

WORKFLOW:
    transition(session, type, context, data):
        1. validate pairing (InvalidStateError otherwise)
        2. push previous state key onto history when it changes (max 5)
        3. return a new Session in the target state

    navigate_back(session):
        - pop the newest history entry and re-enter it
        - empty history → root menu (menu:main)

    enter_help / exit_help:
        - help stores a snapshot of the session being left (return_to)
        - exit restores it verbatim; no snapshot → root menu

    is_valid_input(session, raw):
        - "text" sentinel accepts any non-empty input
        - numeric menus accept 1..N where N is the highest numeric option
        - otherwise exact, case-insensitive match against the vocabulary

KEY FACTS:
    - State keys are "type:context" (or "type" for idle)
    - History never exceeds 5 entries
    - Help snapshots never nest (the snapshot has no return_to)
    - Menu routes are declarative tables, not branching code

TESTING ENVIRONMENT:
    - StateMachine(clock=lambda: fixed_ts) for deterministic timestamps
"""

import logging
import re
import time
from typing import Callable, Dict, List, Optional, Tuple

from permit_session.config.constants import SESSION_HISTORY_LIMIT
from permit_session.core.exceptions import InvalidStateError
from permit_session.pipeline.schemas import (
    VALID_CONTEXTS,
    Session,
    SessionData,
    StateType,
    ensure_valid_state,
    make_state_key,
    utc_from_timestamp,
)

logger = logging.getLogger(__name__)

# ================================================================================
# TABLES
# ================================================================================

TEXT_SENTINEL = "text"
ROOT_STATE = (StateType.MENU, "main")

# ASCII only: str.isdigit() also accepts superscripts that int() rejects
MENU_NUMBER = re.compile(r"[0-9]+")

EXPECTED_INPUTS: Dict[str, List[str]] = {
    "idle": [TEXT_SENTINEL],
    "menu:main": ["1", "2", "3", "4", "5"],
    "menu:privacy": ["1", "2", "3"],
    "menu:renewal": ["1", "2", "3"],
    "menu:quick_actions": ["1", "2", "3"],
    "menu:draft": ["1", "2", "3"],
    "menu:status": ["1", "2", "3"],
    "form:new_permit": [TEXT_SENTINEL, "back", "save", "help"],
    "form:renewal_edit": ["1", "2", "3", "4", "5", "6", "7", "8", "9", "renovar", "cancelar"],
    "form:privacy_consent": ["1", "2", "acepto", "no"],
    "form:field_edit": [TEXT_SENTINEL, "back", "cancelar"],
    "confirmation:permit_data": ["1", "2", "3", "confirmar", "editar"],
    "confirmation:renewal_data": ["1", "2", "3", "confirmar", "editar"],
    "confirmation:privacy_acceptance": ["1", "2"],
    "confirmation:payment": ["1", "2", "pagar"],
    "status:checking": ["1", "2", "3", "crear", "renovar"],
    "status:managing": ["1", "2", "3"],
    "status:selecting": [TEXT_SENTINEL],
    "help:general": ["menu", "back", "continue"],
    "help:form_help": ["menu", "back", "continue"],
    "help:payment_help": ["menu", "back", "continue"],
    "error:validation": ["1", "2", "3"],
    "error:system": ["1", "2", "3"],
    "error:rate_limit": ["1", "2"],
    "error:recovery": ["1", "2", "3", "recover", "restart", "support"],
    "notification:permit_ready": ["1", "2", "menu"],
    "notification:reminder": ["1", "2", "menu"],
    "notification:delivery": ["1", "2", "menu"],
}

BREADCRUMB_LABELS: Dict[str, str] = {
    "menu:main": "🏠 Menú Principal",
    "menu:privacy": "🔒 Privacidad",
    "menu:renewal": "♻️ Renovación",
    "form:new_permit": "📝 Nuevo Permiso",
    "form:renewal_edit": "✏️ Editar Renovación",
    "form:field_edit": "✏️ Corregir Dato",
    "confirmation:permit_data": "✅ Confirmación",
    "confirmation:payment": "💳 Pago",
    "status:checking": "📊 Estado",
    "help:general": "❓ Ayuda",
    "help:form_help": "❓ Ayuda del Formulario",
    "error:recovery": "🛠️ Recuperación",
}

# Option token → target (type, context). Synonyms share a target.
MENU_ROUTES: Dict[str, Dict[str, Tuple[StateType, str]]] = {
    "menu:main": {
        "1": (StateType.FORM, "new_permit"),
        "2": (StateType.MENU, "renewal"),
        "3": (StateType.STATUS, "checking"),
        "4": (StateType.HELP, "general"),
        "5": (StateType.MENU, "privacy"),
    },
    "menu:privacy": {
        "1": (StateType.FORM, "privacy_consent"),
        "2": (StateType.CONFIRMATION, "privacy_acceptance"),
        "3": (StateType.MENU, "main"),
    },
    "menu:renewal": {
        "1": (StateType.FORM, "renewal_edit"),
        "2": (StateType.STATUS, "selecting"),
        "3": (StateType.MENU, "main"),
    },
    "status:checking": {
        "1": (StateType.FORM, "new_permit"),
        "crear": (StateType.FORM, "new_permit"),
        "2": (StateType.MENU, "renewal"),
        "renovar": (StateType.MENU, "renewal"),
        "3": (StateType.MENU, "main"),
    },
    "error:recovery": {
        "1": (StateType.FORM, "new_permit"),
        "recover": (StateType.FORM, "new_permit"),
        "2": (StateType.MENU, "main"),
        "restart": (StateType.MENU, "main"),
        "3": (StateType.HELP, "general"),
        "support": (StateType.HELP, "general"),
    },
}

# Words that work from any state
GLOBAL_COMMANDS: Dict[str, str] = {
    "menu": "menu",
    "menú": "menu",
    "inicio": "menu",
    "ayuda": "help",
    "help": "help",
    "soporte": "help",
    "/ayuda": "help",
    "atras": "back",
    "atrás": "back",
    "regresar": "back",
    "cancelar": "cancel",
    "/cancelar": "cancel",
    "/reiniciar": "restart",
    "/permiso": "new_permit",
    "/estado": "status",
}

# Flat state names written by the previous single-level state format
LEGACY_STATE_MAP: Dict[str, Tuple[StateType, Optional[str]]] = {
    "idle": (StateType.IDLE, None),
    "main_menu": (StateType.MENU, "main"),
    "showing_menu": (StateType.MENU, "main"),
    "privacy_notice": (StateType.MENU, "privacy"),
    "renewal_menu": (StateType.MENU, "renewal"),
    "collecting": (StateType.FORM, "new_permit"),
    "collecting_data": (StateType.FORM, "new_permit"),
    "editing_field": (StateType.FORM, "field_edit"),
    "renewal_editing": (StateType.FORM, "renewal_edit"),
    "confirming": (StateType.CONFIRMATION, "permit_data"),
    "confirming_data": (StateType.CONFIRMATION, "permit_data"),
    "awaiting_payment": (StateType.CONFIRMATION, "payment"),
    "checking_status": (StateType.STATUS, "checking"),
    "managing_permits": (StateType.STATUS, "managing"),
    "help": (StateType.HELP, "general"),
}


def parse_state_key(state_key: str) -> Tuple[StateType, Optional[str]]:
    """Split a history entry back into (type, context)."""
    state_type, _, context = state_key.partition(":")
    return ensure_valid_state(state_type, context or None), (context or None)


# ================================================================================
# STATE MACHINE
# ================================================================================

class StateMachine:
    """Pure transitions over Session values."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    # ========================================================================
    # CONSTRUCTION
    # ========================================================================

    def create_state(
        self,
        identity: str,
        state_type: StateType,
        context: Optional[str] = None,
        data: Optional[SessionData] = None,
    ) -> Session:
        """New Session in the given state (InvalidStateError if not allowed)."""
        resolved = ensure_valid_state(state_type, context)
        stamp = utc_from_timestamp(self._clock())
        return Session(
            identity=identity,
            state_type=resolved,
            state_context=context,
            data=data or SessionData(),
            created_at=stamp,
            last_activity_at=stamp,
        )

    def from_legacy(self, identity: str, legacy_state: str) -> Session:
        """Session for a flat legacy state name; unknown names map to idle."""
        state_type, context = LEGACY_STATE_MAP.get(legacy_state, (StateType.IDLE, None))
        if legacy_state not in LEGACY_STATE_MAP:
            logger.warning(f"Unknown legacy state '{legacy_state}', starting idle")
        return self.create_state(identity, state_type, context)

    # ========================================================================
    # VOCABULARY
    # ========================================================================

    @staticmethod
    def expected_inputs(state_key: str) -> List[str]:
        return list(EXPECTED_INPUTS.get(state_key, []))

    def is_valid_input(self, session: Session, raw: str) -> bool:
        """Does raw belong to the vocabulary of the session's state?"""
        expected = self.expected_inputs(session.state_key)
        token = (raw or "").strip().lower()
        if not token or not expected:
            return False

        if TEXT_SENTINEL in expected:
            return True

        numeric = [int(opt) for opt in expected if MENU_NUMBER.fullmatch(opt)]
        if numeric and MENU_NUMBER.fullmatch(token):
            return 1 <= int(token) <= max(numeric)

        return token in (opt.lower() for opt in expected)

    @staticmethod
    def resolve_global_command(raw: str) -> Optional[str]:
        """Action name for a state-independent command, else None."""
        return GLOBAL_COMMANDS.get((raw or "").strip().lower())

    @staticmethod
    def route(session: Session, raw: str) -> Optional[Tuple[StateType, str]]:
        """Declarative menu route for an option token, else None."""
        table = MENU_ROUTES.get(session.state_key, {})
        return table.get((raw or "").strip().lower())

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    def transition(
        self,
        session: Session,
        target_type: StateType,
        target_context: Optional[str] = None,
        data: Optional[SessionData] = None,
    ) -> Session:
        """
        Move to (target_type, target_context).

        The previous state key is pushed onto history when the key changes.
        data replaces the collected data when given, otherwise it is kept.
        """
        resolved = ensure_valid_state(target_type, target_context)
        target_key = make_state_key(resolved, target_context)

        history = list(session.history)
        if session.state_key != target_key:
            history.append(session.state_key)
        history = history[-SESSION_HISTORY_LIMIT:]

        update = {
            "state_type": resolved,
            "state_context": target_context,
            "history": history,
            "last_activity_at": utc_from_timestamp(self._clock()),
        }
        if data is not None:
            update["data"] = data

        logger.debug(f"Transition {session.state_key} → {target_key}")
        return session.model_copy(update=update, deep=True)

    def navigate_back(self, session: Session) -> Session:
        """Re-enter the newest history entry, or the root menu."""
        history = list(session.history)
        while history:
            previous = history.pop()
            try:
                state_type, context = parse_state_key(previous)
            except InvalidStateError:
                logger.warning(f"Dropping invalid history entry '{previous}'")
                continue
            return session.model_copy(
                update={
                    "state_type": state_type,
                    "state_context": context,
                    "history": history,
                    "last_activity_at": utc_from_timestamp(self._clock()),
                },
                deep=True,
            )

        state_type, context = ROOT_STATE
        return session.model_copy(
            update={
                "state_type": state_type,
                "state_context": context,
                "history": [],
                "last_activity_at": utc_from_timestamp(self._clock()),
            },
            deep=True,
        )

    def enter_help(self, session: Session, help_context: str = "general") -> Session:
        """Switch to help:<context>, keeping a snapshot to return to."""
        if session.state_type is StateType.HELP:
            snapshot = session.return_to
        else:
            snapshot = session.snapshot()
        helped = self.transition(session, StateType.HELP, help_context)
        return helped.model_copy(update={"return_to": snapshot})

    def exit_help(self, session: Session) -> Session:
        """Restore the snapshot taken on help entry, or go to the root menu."""
        if session.state_type is StateType.HELP and session.return_to is not None:
            restored = session.return_to.model_copy(
                update={"last_activity_at": utc_from_timestamp(self._clock())},
                deep=True,
            )
            logger.debug(f"Help exit restores {restored.state_key}")
            return restored

        state_type, context = ROOT_STATE
        return self.transition(session, state_type, context).model_copy(update={"return_to": None})

    # ========================================================================
    # DESCRIPTIONS
    # ========================================================================

    @staticmethod
    def breadcrumb(state_key: str) -> str:
        return BREADCRUMB_LABELS.get(state_key, state_key)

    def describe(self, session: Session) -> str:
        """Breadcrumb trail of history plus the current state."""
        keys = list(session.history) + [session.state_key]
        return " → ".join(self.breadcrumb(key) for key in keys)

    @staticmethod
    def valid_contexts(state_type: StateType) -> Tuple[str, ...]:
        return VALID_CONTEXTS[StateType(state_type)]
