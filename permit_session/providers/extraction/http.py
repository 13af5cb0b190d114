"""
FILE: permit_session/providers/extraction/http.py

Remote extraction collaborator over HTTP (httpx). Posts the extraction
request as camelCase JSON and parses the camelCase result.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from permit_session.config.settings import Settings
from permit_session.core.exceptions import ConfigurationError, ExtractionError
from permit_session.pipeline.schemas import ExtractionRequest, ExtractionResult
from permit_session.providers.extraction.base import IExtractionProvider

logger = logging.getLogger(__name__)


class HttpExtractionProvider(IExtractionProvider):
    """Extraction collaborator reached over HTTP."""

    name = "http"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.client = client
        self.initialized = False

    async def initialize(self) -> None:
        if not self.settings.extraction_url:
            raise ConfigurationError("EXTRACTION_URL is required for the http extraction provider")

        if self.client is None:
            headers = {"Content-Type": "application/json"}
            if self.settings.extraction_api_key:
                headers["Authorization"] = f"Bearer {self.settings.extraction_api_key}"
            self.client = httpx.AsyncClient(
                timeout=self.settings.extraction_timeout,
                headers=headers,
            )
        self.initialized = True
        logger.info("✓ HttpExtractionProvider initialized")

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        if not self.initialized or self.client is None:
            raise ExtractionError("HttpExtractionProvider not initialized")

        try:
            response = await self.client.post(
                self.settings.extraction_url,
                json=request.model_dump(by_alias=True, mode="json"),
            )
            response.raise_for_status()
            return ExtractionResult.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            raise ExtractionError(
                f"Extraction service returned {e.response.status_code}",
                context={"status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            raise ExtractionError(f"Extraction service unreachable: {str(e)}")
        except (ValueError, PydanticValidationError) as e:
            raise ExtractionError(f"Extraction response malformed: {str(e)[:200]}")

    async def shutdown(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        self.initialized = False
        logger.info("HttpExtractionProvider shutdown")


def create_provider(settings: Settings) -> HttpExtractionProvider:
    """Factory used by ServiceContainer."""
    return HttpExtractionProvider(settings)
