"""Per-state input handling, on in-memory sessions."""

import pytest

from permit_session.core.state_machine import ROOT_STATE
from permit_session.pipeline.dialogue import EDITING_FIELD_KEY, RECOVERY_FIELD_KEY
from permit_session.pipeline.schemas import (
    ExtractionIssue,
    ExtractionResult,
    FieldKey,
    Intent,
    StateType,
)

from tests.conftest import IDENTITY
from tests.test_session_store import complete_session


def texts(outcome):
    return [reply.render_text() for reply in outcome.replies]


@pytest.fixture
def form(state_machine):
    session = state_machine.create_state(IDENTITY, *ROOT_STATE)
    return state_machine.transition(session, StateType.FORM, "new_permit")


class TestNavigation:
    def test_idle_greets_and_shows_menu(self, dialogue, state_machine):
        outcome = dialogue.apply(state_machine.create_state(IDENTITY, StateType.IDLE), "hola")

        assert outcome.session.state_key == "menu:main"
        assert "¡Hola!" in texts(outcome)[0]
        assert "Menú principal" in texts(outcome)[1]

    def test_menu_option_routes(self, dialogue, state_machine):
        outcome = dialogue.apply(state_machine.create_state(IDENTITY, *ROOT_STATE), "1")
        assert outcome.session.state_key == "form:new_permit"
        assert len(outcome.replies) == 1

    def test_invalid_menu_option_is_an_issue(self, dialogue, state_machine):
        outcome = dialogue.apply(state_machine.create_state(IDENTITY, *ROOT_STATE), "9")
        assert outcome.session.state_key == "menu:main"
        assert outcome.replies == []
        assert outcome.issues[0].field is None

    def test_help_and_back_restore_form(self, dialogue, form):
        form.data.vehicle.marca = "Kia"
        helped = dialogue.apply(form, "ayuda")
        assert helped.session.state_key == "help:form_help"

        back = dialogue.apply(helped.session, "continue")
        assert back.session.state_key == "form:new_permit"
        assert back.session.data.vehicle.marca == "Kia"

    def test_back_from_form_returns_to_menu(self, dialogue, form):
        outcome = dialogue.apply(form, "atrás")
        assert outcome.session.state_key == "menu:main"

    def test_menu_command_from_anywhere(self, dialogue, form):
        outcome = dialogue.apply(form, "menú")
        assert outcome.session.state_key == "menu:main"
        assert "Menú principal" in texts(outcome)[0]

    def test_cancel_clears_session(self, dialogue, form):
        outcome = dialogue.apply(form, "cancelar")
        assert outcome.clear is True
        assert "Solicitud cancelada" in texts(outcome)[0]

    def test_states_served_elsewhere_fall_back_to_menu(self, dialogue, state_machine):
        session = state_machine.create_state(IDENTITY, StateType.MENU, "renewal")
        outcome = dialogue.apply(session, "1")
        assert outcome.session.state_key == "menu:main"

    def test_input_is_not_mutated(self, dialogue, form):
        dialogue.apply(form, "Ana Torres")
        assert form.data.personal.nombre_completo is None


class TestFormCollection:
    def test_accepts_expected_field(self, dialogue, form):
        outcome = dialogue.apply(form, "Ana Torres Ruiz")

        assert outcome.session.data.personal.nombre_completo == "Ana Torres Ruiz"
        assert FieldKey.NOMBRE_COMPLETO in outcome.session.completed_fields
        assert outcome.issues == []

    def test_rejected_value_is_not_stored(self, dialogue, form):
        outcome = dialogue.apply(form, "Ana")

        assert outcome.session.data.personal.nombre_completo is None
        assert outcome.session.attempts[FieldKey.NOMBRE_COMPLETO] == 1
        assert outcome.issues[0].field is FieldKey.NOMBRE_COMPLETO
        assert outcome.session.data.extra[RECOVERY_FIELD_KEY] == "nombre_completo"

    def test_recovery_choice_shows_more_examples(self, dialogue, form):
        rejected = dialogue.apply(form, "Ana")
        outcome = dialogue.apply(rejected.session, "1")

        assert outcome.issues == []
        assert outcome.session.data.personal.nombre_completo is None
        assert RECOVERY_FIELD_KEY not in outcome.session.data.extra

    def test_multi_field_extraction(self, dialogue, form):
        form.data.personal.nombre_completo = "Ana Torres"
        form.completed_fields.append(FieldKey.NOMBRE_COMPLETO)
        extraction = ExtractionResult(
            extracted_fields={"curp_rfc": "TORA900101MDFRZN08", "ano_modelo": 2021, "color": "gris"}
        )

        outcome = dialogue.apply(form, "TORA900101MDFRZN08 gris 2021", extraction)

        assert outcome.session.data.personal.curp_rfc == "TORA900101MDFRZN08"
        assert outcome.session.data.vehicle.ano_modelo == "2021"
        assert outcome.session.data.vehicle.color == "gris"
        assert texts(outcome)[0] == "✓ Guardado: CURP o RFC, Año del modelo, Color"

    def test_cancel_intent_is_not_stored(self, dialogue, form):
        extraction = ExtractionResult(
            extracted_fields={"nombre_completo": "ya no quiero"},
            intent=Intent.CANCELLING,
        )
        outcome = dialogue.apply(form, "ya no quiero", extraction)

        assert outcome.clear is True
        assert "Solicitud cancelada" in texts(outcome)[0]

    def test_question_is_answered_not_stored(self, dialogue, form):
        extraction = ExtractionResult(
            extracted_fields={"nombre_completo": "¿para qué quieren mi nombre?"},
            intent=Intent.ASKING_QUESTION,
            clarification_question="Tu nombre aparece impreso en el permiso.",
        )
        outcome = dialogue.apply(form, "¿para qué quieren mi nombre?", extraction)

        assert outcome.session.data.personal.nombre_completo is None
        assert texts(outcome)[0] == "Tu nombre aparece impreso en el permiso."
        assert len(outcome.replies) == 2

    def test_extractor_issue_counts_attempt(self, dialogue, form):
        extraction = ExtractionResult(
            validation_errors=[ExtractionIssue(field="nombre_completo", error="Falta el apellido")]
        )
        outcome = dialogue.apply(form, "Ana", extraction)

        assert outcome.issues[0].message == "Falta el apellido"
        assert outcome.session.attempts[FieldKey.NOMBRE_COMPLETO] == 1

    def test_last_field_moves_to_confirmation(self, dialogue):
        session = complete_session()
        session.data.vehicle.ano_modelo = None
        session.completed_fields.remove(FieldKey.ANO_MODELO)
        session = session.model_copy(update={"state_type": StateType.FORM, "state_context": "new_permit"})

        outcome = dialogue.apply(session, "2021")

        assert outcome.session.state_key == "confirmation:permit_data"


class TestConfirmationAndEdit:
    @pytest.fixture
    def confirming(self):
        return complete_session().model_copy(
            update={"state_type": StateType.CONFIRMATION, "state_context": "permit_data"}
        )

    def test_confirm_goes_to_payment(self, dialogue, confirming):
        outcome = dialogue.apply(confirming, "1")
        assert outcome.session.state_key == "confirmation:payment"

        paid = dialogue.apply(outcome.session, "pagar")
        assert "Estamos generando tu enlace de pago" in texts(paid)[0]

    def test_inline_field_edit(self, dialogue, confirming):
        editing = dialogue.apply(confirming, "2").session
        assert editing.state_key == "form:field_edit"

        outcome = dialogue.apply(editing, "4 Toyota")

        assert outcome.session.state_key == "confirmation:permit_data"
        assert outcome.session.data.vehicle.marca == "Toyota"

    def test_two_step_field_edit(self, dialogue, confirming):
        editing = dialogue.apply(confirming, "2").session
        chosen = dialogue.apply(editing, "6")
        assert chosen.session.data.extra[EDITING_FIELD_KEY] == "color"

        outcome = dialogue.apply(chosen.session, "Rojo/Negro")
        assert outcome.session.data.vehicle.color == "Rojo y Negro"

    def test_edit_out_of_range(self, dialogue, confirming):
        editing = dialogue.apply(confirming, "2").session
        outcome = dialogue.apply(editing, "12")
        assert outcome.issues[0].message == "Elige un número del 1 al 9"

    def test_cancelar_in_field_edit_returns_to_confirmation(self, dialogue, confirming):
        editing = dialogue.apply(confirming, "2").session
        outcome = dialogue.apply(editing, "cancelar")
        assert outcome.session.state_key == "confirmation:permit_data"
        assert outcome.clear is False


class TestExtractionRequest:
    def test_only_collecting_states_extract(self, dialogue, state_machine, form):
        assert dialogue.extraction_request(state_machine.create_state(IDENTITY, *ROOT_STATE), "1") is None
        request = dialogue.extraction_request(form, "Ana Torres")
        assert request.expected_field is FieldKey.NOMBRE_COMPLETO
        assert request.current_state_key == "form:new_permit"

    def test_commands_skip_extraction(self, dialogue, form):
        assert dialogue.extraction_request(form, "menu") is None
        assert dialogue.extraction_request(form, "save") is None
