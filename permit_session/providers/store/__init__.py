"""Key-value store backends."""

from permit_session.providers.store.base import IStoreBackend
from permit_session.providers.store.memory import MemoryStoreBackend
from permit_session.providers.store.redis import RedisStoreBackend

__all__ = [
    "IStoreBackend",
    "MemoryStoreBackend",
    "RedisStoreBackend",
]
