from abc import ABC, abstractmethod
from typing import Optional


class IStoreBackend(ABC):
    """Abstract base class for key-value store backends."""

    name: str = "base"

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Retrieve a value (None when missing or expired)."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a time-to-live."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key; True if it existed."""
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        """Create key only if it does not exist; True on creation."""
        pass

    @abstractmethod
    async def compare_and_delete(self, key: str, expected: str) -> bool:
        """Delete key only if its value equals expected."""
        pass

    @abstractmethod
    async def incr(self, key: str, ttl_seconds: int) -> int:
        """Atomically increment a counter; expiry is set on creation."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release backend resources."""
        pass
