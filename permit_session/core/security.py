"""
================================================================================
FILE: permit_session/core/security.py
================================================================================

PURPOSE:
    Normalizes raw user text and validates it field by field before anything
    is written to a Session. Also guards free-text fields against embedded
    bot commands and masks sensitive values for log lines.

WORKFLOW:
    normalize(raw, field):
        1. Unicode NFC
        2. Strip C0/C1 control characters (tab and newline kept)
        3. Strip zero-width characters (U+200B..U+200D, U+FEFF)
        4. Trim
        5. Truncate to the field's max length (warning logged)

    validate_field(field, raw):
        1. normalize
        2. empty → invalid
        3. embedded "/command" → invalid, sanitized value has commands removed
        4. per-field rule (name, email, curp_rfc, serial/engine, year, color,
           free text)

KEY FACTS:
    - Pure functions over strings; no I/O
    - Sanitized values are what gets stored, never the raw text
    - Error messages are Spanish, user-facing

TESTING ENVIRONMENT:
    - SecurityValidator(current_year=2025) pins the model-year upper bound
"""

import logging
import re
import unicodedata
from datetime import datetime
from typing import Dict, Optional, Union

from permit_session.config.constants import MAX_INPUT_LENGTHS
from permit_session.pipeline.schemas import FieldKey, FieldValidationResult

logger = logging.getLogger(__name__)

# ================================================================================
# PATTERNS
# ================================================================================

CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")
ZERO_WIDTH_CHARS = re.compile(r"[\u200B-\u200D\uFEFF]")
COMMAND_INJECTION = re.compile(
    r"(?:^|\s)/(?:permiso|ayuda|estado|pagar|reset|cancelar|mis-permisos|renovar)\b",
    re.IGNORECASE,
)
SLASH_WORD = re.compile(r"/[\w-]+")
NAME_PATTERN = re.compile(r"^[A-Za-zÀ-ÖØ-öø-ÿ\s\-'.]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NON_ALNUM = re.compile(r"[^A-Za-z0-9]")

SENSITIVE_FIELDS = {
    FieldKey.CURP_RFC.value,
    FieldKey.EMAIL.value,
    FieldKey.NUMERO_SERIE.value,
    FieldKey.NUMERO_MOTOR.value,
}

MIN_MODEL_YEAR = 1900


def _field_name(field: Union[FieldKey, str, None]) -> str:
    if field is None:
        return "default"
    return field.value if isinstance(field, FieldKey) else str(field)


class SecurityValidator:
    """Normalization and per-field validation of user input."""

    def __init__(
        self,
        max_lengths: Optional[Dict[str, int]] = None,
        current_year: Optional[int] = None,
    ):
        self.max_lengths = dict(MAX_INPUT_LENGTHS)
        if max_lengths:
            self.max_lengths.update(max_lengths)
        self._current_year = current_year

    @property
    def current_year(self) -> int:
        return self._current_year or datetime.now().year

    # ========================================================================
    # NORMALIZATION
    # ========================================================================

    def max_length(self, field: Union[FieldKey, str, None]) -> int:
        return self.max_lengths.get(_field_name(field), self.max_lengths["default"])

    def normalize(self, raw: Optional[str], field: Union[FieldKey, str, None] = None) -> str:
        """Normalize and truncate raw text for the given field."""
        if not raw:
            return ""

        text = unicodedata.normalize("NFC", str(raw))
        text = CONTROL_CHARS.sub("", text)
        text = ZERO_WIDTH_CHARS.sub("", text)
        text = text.strip()

        limit = self.max_length(field)
        if len(text) > limit:
            logger.warning(
                f"Input truncated for field {_field_name(field)}: {len(text)} → {limit} chars"
            )
            text = text[:limit].rstrip()
        return text

    def contains_command_injection(self, text: str) -> bool:
        return bool(COMMAND_INJECTION.search(text or ""))

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def validate_field(self, field: Union[FieldKey, str], raw: Optional[str]) -> FieldValidationResult:
        """
        Validate one value for one field.

        Returns:
            FieldValidationResult(valid, sanitized_value, error)
        """
        name = _field_name(field)
        text = self.normalize(raw, name)

        if not text:
            return FieldValidationResult(valid=False, error="Este campo no puede estar vacío")

        if self.contains_command_injection(text):
            stripped = re.sub(r"\s{2,}", " ", SLASH_WORD.sub("", text)).strip()
            logger.warning(f"Command text rejected in field {name}")
            return FieldValidationResult(
                valid=False,
                sanitized_value=stripped,
                error="El texto no puede contener comandos (palabras que empiezan con /)",
            )

        if name == FieldKey.NOMBRE_COMPLETO.value:
            return self._validate_name(text)
        if name == FieldKey.EMAIL.value:
            return self._validate_email(text)
        if name == FieldKey.CURP_RFC.value:
            return self._validate_curp_rfc(text)
        if name in (FieldKey.NUMERO_SERIE.value, FieldKey.NUMERO_MOTOR.value):
            return self._validate_identifier(text)
        if name == FieldKey.ANO_MODELO.value:
            return self._validate_year(text)
        if name == FieldKey.COLOR.value:
            return FieldValidationResult(valid=True, sanitized_value=re.sub(r"\s*[/\\]\s*", " y ", text))

        return FieldValidationResult(valid=True, sanitized_value=text)

    def _validate_name(self, text: str) -> FieldValidationResult:
        if len(text.split()) < 2:
            return FieldValidationResult(
                valid=False, error="Por favor ingresa tu nombre completo (nombre y apellido)"
            )
        if not NAME_PATTERN.match(text):
            return FieldValidationResult(
                valid=False, error="El nombre solo puede contener letras, espacios, guiones y apóstrofes"
            )
        return FieldValidationResult(valid=True, sanitized_value=text)

    def _validate_email(self, text: str) -> FieldValidationResult:
        if len(text) > 254 or text.count("@") != 1 or not EMAIL_PATTERN.match(text):
            return FieldValidationResult(valid=False, error="Formato de correo electrónico inválido")
        return FieldValidationResult(valid=True, sanitized_value=text)

    def _validate_curp_rfc(self, text: str) -> FieldValidationResult:
        cleaned = NON_ALNUM.sub("", text).upper()
        if len(cleaned) < 10 or len(cleaned) > 18:
            return FieldValidationResult(
                valid=False, error="CURP/RFC debe tener entre 10 y 18 caracteres"
            )
        return FieldValidationResult(valid=True, sanitized_value=cleaned)

    def _validate_identifier(self, text: str) -> FieldValidationResult:
        cleaned = NON_ALNUM.sub("", text).upper()
        if len(cleaned) < 5:
            return FieldValidationResult(valid=False, error="Debe tener al menos 5 caracteres")
        return FieldValidationResult(valid=True, sanitized_value=cleaned)

    def _validate_year(self, text: str) -> FieldValidationResult:
        upper = self.current_year + 1
        try:
            year = int(text)
        except ValueError:
            year = None
        if year is None or year < MIN_MODEL_YEAR or year > upper:
            return FieldValidationResult(
                valid=False, error=f"El año debe estar entre {MIN_MODEL_YEAR} y {upper}"
            )
        return FieldValidationResult(valid=True, sanitized_value=str(year))

    # ========================================================================
    # LOG MASKING
    # ========================================================================

    @staticmethod
    def mask_field_value(field: Union[FieldKey, str], value: Optional[str]) -> str:
        """
        Value safe for log lines.

        Sensitive fields keep the first 3 and last 2 characters.
        """
        if not value:
            return ""
        if _field_name(field) in SENSITIVE_FIELDS:
            if len(value) <= 5:
                return "***"
            return f"{value[:3]}***{value[-2:]}"
        return value
