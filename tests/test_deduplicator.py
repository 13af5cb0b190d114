"""Fingerprint deduplication and provider message-id markers."""

from permit_session.core.deduplicator import Deduplicator, ProcessedMessageRegistry
from permit_session.core.exceptions import StoreError
from permit_session.providers.store.memory import MemoryStoreBackend

from tests.conftest import IDENTITY, START_TIME


class BrokenBackend(MemoryStoreBackend):
    async def set_if_absent(self, key, value, ttl_ms):
        raise StoreError("Redis SET NX failed: connection refused")


class TestDeduplicator:
    def test_same_text_same_second_is_duplicate(self):
        dedup = Deduplicator()
        assert dedup.is_duplicate(IDENTITY, "hola", START_TIME) is False
        assert dedup.is_duplicate(IDENTITY, "hola", START_TIME + 0.4) is True

    def test_next_second_is_not_duplicate(self):
        dedup = Deduplicator()
        dedup.is_duplicate(IDENTITY, "hola", START_TIME)
        assert dedup.is_duplicate(IDENTITY, "hola", START_TIME + 1) is False

    def test_identity_and_text_are_part_of_fingerprint(self):
        dedup = Deduplicator()
        dedup.is_duplicate(IDENTITY, "hola", START_TIME)
        assert dedup.is_duplicate("5210000000000", "hola", START_TIME) is False
        assert dedup.is_duplicate(IDENTITY, "adios", START_TIME) is False

    def test_cache_is_bounded(self):
        dedup = Deduplicator(max_entries=10)
        for i in range(25):
            dedup.is_duplicate(IDENTITY, f"msg {i}", START_TIME)
        assert len(dedup) == 10

    def test_sweep_evicts_old_fingerprints(self, clock):
        dedup = Deduplicator(window_seconds=5, clock=clock)
        dedup.is_duplicate(IDENTITY, "uno")
        dedup.is_duplicate(IDENTITY, "dos")
        clock.advance(11)
        assert dedup.sweep() == 2
        assert len(dedup) == 0


class TestProcessedMessageRegistry:
    async def test_first_sighting_is_not_processed(self, backend):
        registry = ProcessedMessageRegistry(backend, ttl_seconds=3600)
        assert await registry.is_processed("wamid.1") is False
        assert await registry.is_processed("wamid.1") is True
        assert await registry.is_processed("wamid.2") is False

    async def test_marker_expires(self, backend, clock):
        registry = ProcessedMessageRegistry(backend, ttl_seconds=60)
        await registry.is_processed("wamid.1")
        clock.advance(61)
        assert await registry.is_processed("wamid.1") is False

    async def test_missing_id_is_never_processed(self, backend):
        registry = ProcessedMessageRegistry(backend)
        assert await registry.is_processed(None) is False
        assert await registry.is_processed("") is False

    async def test_store_failure_processes_anyway(self, clock):
        registry = ProcessedMessageRegistry(BrokenBackend(clock=clock))
        assert await registry.is_processed("wamid.1") is False
