"""Input normalization and per-field validation."""

from permit_session.core.security import SecurityValidator
from permit_session.pipeline.schemas import FieldKey


class TestNormalize:
    def test_strips_control_and_zero_width(self, validator):
        assert validator.normalize("  Ju\u200ban\x07 P\u00e9rez\ufeff ") == "Juan P\u00e9rez"

    def test_composes_unicode(self, validator):
        assert validator.normalize("Pe\u0301rez") == "P\u00e9rez"

    def test_truncates_per_field(self, validator):
        assert validator.normalize("20201", FieldKey.ANO_MODELO) == "2020"
        assert len(validator.normalize("x" * 800)) == 500

    def test_empty_input(self, validator):
        assert validator.normalize(None) == ""
        assert validator.normalize("") == ""


class TestValidateField:
    def test_name_needs_two_words(self, validator):
        assert not validator.validate_field(FieldKey.NOMBRE_COMPLETO, "Juan").valid
        assert validator.validate_field(FieldKey.NOMBRE_COMPLETO, "Juan Pérez").valid

    def test_name_rejects_digits(self, validator):
        result = validator.validate_field(FieldKey.NOMBRE_COMPLETO, "Juan 3000")
        assert not result.valid
        assert "letras" in result.error

    def test_curp_is_cleaned_and_uppercased(self, validator):
        result = validator.validate_field(FieldKey.CURP_RFC, "perj-850124-hdfrzn01")
        assert result.valid
        assert result.sanitized_value == "PERJ850124HDFRZN01"

    def test_curp_length_bounds(self, validator):
        assert not validator.validate_field(FieldKey.CURP_RFC, "ABC123").valid
        assert not validator.validate_field(FieldKey.CURP_RFC, "A" * 19).valid

    def test_identifiers(self, validator):
        result = validator.validate_field(FieldKey.NUMERO_SERIE, "1hgcm-8263 3a")
        assert result.sanitized_value == "1HGCM82633A"
        assert not validator.validate_field(FieldKey.NUMERO_MOTOR, "ab-1").valid

    def test_year_bounds(self, validator):
        assert validator.validate_field(FieldKey.ANO_MODELO, "2026").valid
        assert not validator.validate_field(FieldKey.ANO_MODELO, "2027").valid
        assert not validator.validate_field(FieldKey.ANO_MODELO, "1899").valid
        assert not validator.validate_field(FieldKey.ANO_MODELO, "dos").valid

    def test_color_separators(self, validator):
        assert validator.validate_field(FieldKey.COLOR, "Rojo/Negro").sanitized_value == "Rojo y Negro"

    def test_email(self, validator):
        assert validator.validate_field(FieldKey.EMAIL, "ana@example.com").valid
        assert not validator.validate_field(FieldKey.EMAIL, "ana@@example.com").valid
        assert not validator.validate_field(FieldKey.EMAIL, "ana example.com").valid

    def test_empty_value(self, validator):
        result = validator.validate_field(FieldKey.MARCA, " \u200b ")
        assert not result.valid
        assert result.error == "Este campo no puede estar vacío"

    def test_command_injection_rejected(self, validator):
        result = validator.validate_field(FieldKey.DOMICILIO, "Calle 5 /permiso")
        assert not result.valid
        assert result.sanitized_value == "Calle 5"

    def test_year_upper_bound_follows_clock(self):
        assert SecurityValidator(current_year=2030).validate_field(FieldKey.ANO_MODELO, "2031").valid


class TestDocumentedExamples:
    def test_year_examples(self, validator):
        assert not validator.validate_field("ano_modelo", "1899").valid
        result = validator.validate_field("ano_modelo", "2024")
        assert result.valid and result.sanitized_value == "2024"

    def test_curp_example(self, validator):
        result = validator.validate_field("curp_rfc", "abcd-1234 5678")
        assert result.valid
        assert result.sanitized_value == "ABCD12345678"


class TestMasking:
    def test_sensitive_fields_masked(self):
        assert SecurityValidator.mask_field_value(FieldKey.CURP_RFC, "PERJ850124HDFRZN01") == "PER***01"
        assert SecurityValidator.mask_field_value(FieldKey.EMAIL, "a@b.c") == "***"

    def test_other_fields_unmasked(self):
        assert SecurityValidator.mask_field_value(FieldKey.MARCA, "Toyota") == "Toyota"
