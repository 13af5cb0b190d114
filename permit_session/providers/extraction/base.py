from abc import ABC, abstractmethod

from permit_session.pipeline.schemas import ExtractionRequest, ExtractionResult


class IExtractionProvider(ABC):
    """Abstract base class for field extraction collaborators."""

    name: str = "base"

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the provider."""
        pass

    @abstractmethod
    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        """Turn free text into structured field candidates."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release provider resources."""
        pass
