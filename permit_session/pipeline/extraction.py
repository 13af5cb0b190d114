"""
================================================================================
FILE: permit_session/pipeline/extraction.py
================================================================================

PURPOSE:
    Turns free text into field candidates before the session lock is taken.
    The primary provider (remote extractor) runs behind the circuit breaker;
    any failure falls back to the deterministic pattern extractor so a
    message is never lost to an extraction outage.

WORKFLOW:
    1. primary.extract(request) through CircuitBreaker.protect
    2. failure or open circuit → fallback.extract(request)
    3. post_process(result): trim, canonicalize identifiers, drop empties
       and unknown keys

KEY FACTS:
    - When primary IS the pattern provider there is no breaker and no
      second attempt
    - Post-processing applies to both paths
"""

import logging
import re
from typing import Dict, Optional

from permit_session.core.circuit_breaker import CircuitBreaker
from permit_session.pipeline.schemas import (
    ExtractionRequest,
    ExtractionResult,
    FieldKey,
    parse_field_key,
)
from permit_session.providers.extraction.base import IExtractionProvider
from permit_session.providers.extraction.pattern import PatternExtractionProvider

logger = logging.getLogger(__name__)

IDENTIFIER_FIELDS = (FieldKey.CURP_RFC, FieldKey.NUMERO_SERIE, FieldKey.NUMERO_MOTOR)
IDENTIFIER_SEPARATORS = re.compile(r"[\s.\-]+")
NON_DIGITS = re.compile(r"\D")


class ExtractionService:
    """Primary extractor with breaker and deterministic fallback."""

    def __init__(
        self,
        primary: IExtractionProvider,
        fallback: Optional[IExtractionProvider] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.primary = primary
        self.fallback = fallback or PatternExtractionProvider()
        self.breaker = breaker or CircuitBreaker(name="extraction")
        self.fallback_count = 0

    @property
    def uses_fallback_only(self) -> bool:
        return isinstance(self.primary, PatternExtractionProvider)

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        if self.uses_fallback_only:
            result = await self.primary.extract(request)
            return self.post_process(result)

        try:
            result = await self.breaker.protect(self.primary.extract, request)
        except Exception as e:
            self.fallback_count += 1
            logger.warning(f"⚠️  Extraction via {self.primary.name} failed, using pattern fallback: {e}")
            result = await self.fallback.extract(request)
        return self.post_process(result)

    @staticmethod
    def post_process(result: ExtractionResult) -> ExtractionResult:
        """Canonical field values keyed by known field names only."""
        cleaned: Dict[str, str] = {}
        for name, value in result.extracted_fields.items():
            field = parse_field_key(name)
            if field is None:
                logger.debug(f"Dropping unknown extracted field '{name}'")
                continue
            if value is None:
                continue

            text = str(value).strip()
            if field in IDENTIFIER_FIELDS:
                text = IDENTIFIER_SEPARATORS.sub("", text).upper()
            elif field is FieldKey.ANO_MODELO:
                text = NON_DIGITS.sub("", text)

            if text:
                cleaned[field.value] = text

        return result.model_copy(update={"extracted_fields": cleaned})
