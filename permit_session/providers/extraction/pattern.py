"""
FILE: permit_session/providers/extraction/pattern.py

Deterministic extractor. Used directly when EXTRACTION_PROVIDER=pattern and
as the fallback whenever the remote extractor fails or its circuit is open.

Rules:
    - A message answering a free-text question (name, address, brand, model)
      is taken whole as that answer.
    - A single-token message answers whatever field was asked.
    - Otherwise field-shaped patterns: CURP/RFC, VIN (only when no CURP/RFC
      matched), model year, known colors, email.
    - Nothing matched and a field was asked → the whole text answers it.
"""

import logging
import re
from typing import Dict, Optional

from permit_session.config.settings import Settings
from permit_session.pipeline.schemas import (
    ExtractionRequest,
    ExtractionResult,
    FieldKey,
    Intent,
)
from permit_session.providers.extraction.base import IExtractionProvider

logger = logging.getLogger(__name__)

CURP_RFC_PATTERN = re.compile(r"\b[A-Z]{3,4}[0-9]{6}[A-Z0-9]{3,8}\b")
VIN_PATTERN = re.compile(r"\b[A-Z0-9]{17}\b")
YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")
EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")

KNOWN_COLORS = (
    "blanco", "negro", "rojo", "azul", "verde", "amarillo", "gris", "plata",
    "dorado", "café", "cafe", "morado", "naranja", "rosa", "beige", "vino",
    "guinda", "arena", "marrón", "marron",
)
COLOR_PATTERN = re.compile(r"\b(" + "|".join(KNOWN_COLORS) + r")\b", re.IGNORECASE)

FREE_TEXT_FIELDS = (
    FieldKey.NOMBRE_COMPLETO,
    FieldKey.DOMICILIO,
    FieldKey.MARCA,
    FieldKey.LINEA,
)

CANCEL_WORDS = re.compile(r"\b(cancel\w*|ya no quiero)\b", re.IGNORECASE)


class PatternExtractionProvider(IExtractionProvider):
    """Regex-based field extraction."""

    name = "pattern"

    async def initialize(self) -> None:
        logger.info("✓ PatternExtractionProvider initialized")

    async def shutdown(self) -> None:
        logger.info("PatternExtractionProvider shutdown")

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        text = request.raw_text.strip()
        return ExtractionResult(
            extracted_fields=self._fields(text, request.expected_field),
            intent=self._intent(text),
        )

    @staticmethod
    def _intent(text: str) -> Intent:
        if CANCEL_WORDS.search(text):
            return Intent.CANCELLING
        if text.endswith("?") or text.startswith("¿"):
            return Intent.ASKING_QUESTION
        return Intent.PROVIDING_INFO

    def _fields(self, text: str, expected: Optional[FieldKey]) -> Dict[str, str]:
        if not text:
            return {}

        if expected in FREE_TEXT_FIELDS:
            return {expected.value: text}

        if expected is not None and len(text.split()) == 1:
            return {expected.value: text}

        found = self.match_patterns(text)
        if not found and expected is not None:
            found[expected.value] = text
        return found

    @staticmethod
    def match_patterns(text: str) -> Dict[str, str]:
        """Field-shaped matches anywhere in text."""
        found: Dict[str, str] = {}
        upper = text.upper()

        curp = CURP_RFC_PATTERN.search(upper)
        if curp:
            found[FieldKey.CURP_RFC.value] = curp.group(0)
        else:
            vin = VIN_PATTERN.search(upper)
            if vin:
                found[FieldKey.NUMERO_SERIE.value] = vin.group(0)

        year = YEAR_PATTERN.search(text)
        if year:
            found[FieldKey.ANO_MODELO.value] = year.group(0)

        color = COLOR_PATTERN.search(text)
        if color:
            found[FieldKey.COLOR.value] = color.group(1).lower()

        email = EMAIL_PATTERN.search(text)
        if email:
            found[FieldKey.EMAIL.value] = email.group(0)

        return found


def create_provider(settings: Settings) -> PatternExtractionProvider:
    """Factory used by ServiceContainer."""
    return PatternExtractionProvider()
