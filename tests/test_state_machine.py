"""State machine: pairings, transitions, history, help snapshots, vocabulary."""

import pytest

from permit_session.core.exceptions import InvalidStateError
from permit_session.core.state_machine import ROOT_STATE
from permit_session.pipeline.schemas import Session, StateType

from tests.conftest import IDENTITY


class TestStatePairing:
    def test_create_state_builds_key(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.FORM, "new_permit")
        assert session.state_key == "form:new_permit"

    def test_idle_has_no_context(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.IDLE)
        assert session.state_key == "idle"

    def test_unknown_context_rejected(self, state_machine):
        with pytest.raises(InvalidStateError):
            state_machine.create_state(IDENTITY, StateType.MENU, "payment")

    def test_context_required_for_non_idle(self, state_machine):
        with pytest.raises(InvalidStateError):
            state_machine.create_state(IDENTITY, StateType.FORM)

    def test_session_model_rejects_invalid_pairing(self):
        with pytest.raises(InvalidStateError):
            Session(identity=IDENTITY, state_type=StateType.HELP, state_context="renewal")

    def test_every_declared_pairing_is_constructible(self, state_machine):
        for state_type in StateType:
            for context in state_machine.valid_contexts(state_type) or (None,):
                session = state_machine.create_state(IDENTITY, state_type, context)
                assert session.state_context in (state_machine.valid_contexts(state_type) or (None,))

    def test_transition_to_invalid_pairing_raises(self, state_machine):
        session = Session.new(IDENTITY)
        with pytest.raises(InvalidStateError):
            state_machine.transition(session, StateType.ERROR, "main")


class TestTransitions:
    def test_transition_pushes_history(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        moved = state_machine.transition(session, StateType.FORM, "new_permit")

        assert moved.state_key == "form:new_permit"
        assert moved.history == ["menu:main"]
        assert session.state_key == "menu:main"

    def test_same_state_does_not_grow_history(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        moved = state_machine.transition(session, *ROOT_STATE)
        assert moved.history == []

    def test_history_is_capped_at_five(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        targets = [
            (StateType.MENU, "renewal"),
            (StateType.MENU, "privacy"),
            (StateType.STATUS, "checking"),
            (StateType.FORM, "new_permit"),
            (StateType.CONFIRMATION, "permit_data"),
            (StateType.CONFIRMATION, "payment"),
            (StateType.MENU, "main"),
        ]
        for target in targets:
            session = state_machine.transition(session, *target)

        assert len(session.history) == 5
        assert session.history[-1] == "confirmation:payment"

    def test_transition_keeps_collected_data(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.FORM, "new_permit")
        session.data.personal.nombre_completo = "Ana Torres"
        moved = state_machine.transition(session, StateType.CONFIRMATION, "permit_data")
        assert moved.data.personal.nombre_completo == "Ana Torres"

    def test_navigate_back_pops_history(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        session = state_machine.transition(session, StateType.MENU, "renewal")
        back = state_machine.navigate_back(session)

        assert back.state_key == "menu:main"
        assert back.history == []

    def test_navigate_back_with_empty_history_goes_to_root(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.STATUS, "checking")
        back = state_machine.navigate_back(session)
        assert back.state_key == "menu:main"

    def test_navigate_back_skips_invalid_entries(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.STATUS, "checking")
        session = session.model_copy(update={"history": ["menu:renewal", "bogus:state"]})
        back = state_machine.navigate_back(session)
        assert back.state_key == "menu:renewal"


class TestHelp:
    def test_enter_and_exit_help_restores_snapshot(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.FORM, "new_permit")
        session.data.vehicle.marca = "Toyota"

        helped = state_machine.enter_help(session, "form_help")
        assert helped.state_key == "help:form_help"
        assert helped.return_to.state_key == "form:new_permit"

        restored = state_machine.exit_help(helped)
        assert restored.state_key == "form:new_permit"
        assert restored.data.vehicle.marca == "Toyota"

    def test_help_snapshots_do_not_nest(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        helped = state_machine.enter_help(session)
        again = state_machine.enter_help(helped, "form_help")

        assert again.return_to.state_key == "menu:main"
        assert again.return_to.return_to is None

    def test_exit_help_without_snapshot_goes_to_root(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.HELP, "general")
        assert state_machine.exit_help(session).state_key == "menu:main"


class TestVocabulary:
    def test_numeric_menu_accepts_range(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        assert state_machine.is_valid_input(session, "5")
        assert not state_machine.is_valid_input(session, "6")
        assert not state_machine.is_valid_input(session, "0")
        assert not state_machine.is_valid_input(session, "hola")

    @pytest.mark.parametrize("raw", ["²", "١", "3²", "½"])
    def test_non_ascii_digits_are_rejected(self, state_machine, raw):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        assert state_machine.is_valid_input(session, raw) is False

    def test_text_state_accepts_anything_non_empty(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.FORM, "new_permit")
        assert state_machine.is_valid_input(session, "Juan Pérez")
        assert not state_machine.is_valid_input(session, "   ")

    def test_word_options_are_case_insensitive(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.CONFIRMATION, "payment")
        assert state_machine.is_valid_input(session, "PAGAR")

    def test_global_commands(self, state_machine):
        assert state_machine.resolve_global_command(" Menú ") == "menu"
        assert state_machine.resolve_global_command("atrás") == "back"
        assert state_machine.resolve_global_command("/permiso") == "new_permit"
        assert state_machine.resolve_global_command("Toyota") is None

    def test_route_uses_declarative_table(self, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.STATUS, "checking")
        assert state_machine.route(session, "renovar") == (StateType.MENU, "renewal")
        assert state_machine.route(session, "9") is None


class TestDescriptions:
    def test_from_legacy_maps_flat_names(self, state_machine):
        assert state_machine.from_legacy(IDENTITY, "collecting").state_key == "form:new_permit"
        assert state_machine.from_legacy(IDENTITY, "no_such_state").state_key == "idle"

    def test_describe_joins_breadcrumbs(self, state_machine):
        session = state_machine.create_state(IDENTITY, *ROOT_STATE)
        session = state_machine.transition(session, StateType.FORM, "new_permit")
        assert state_machine.describe(session) == "🏠 Menú Principal → 📝 Nuevo Permiso"
