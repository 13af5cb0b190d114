"""Extraction collaborator providers."""

from permit_session.providers.extraction.base import IExtractionProvider
from permit_session.providers.extraction.http import HttpExtractionProvider
from permit_session.providers.extraction.pattern import PatternExtractionProvider

__all__ = [
    "IExtractionProvider",
    "HttpExtractionProvider",
    "PatternExtractionProvider",
]
