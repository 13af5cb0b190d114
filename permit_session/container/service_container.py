"""
================================================================================
SERVICE CONTAINER - PROVIDER DISCOVERY & ENGINE ASSEMBLY
================================================================================

Main dependency injection container.

Implements TWO-LAYER SWAPPABILITY:

Layer 1: .env determines which PROVIDER FILE to import
  Example: STORE_BACKEND=redis  →  Import from permit_session.providers.store.redis

Layer 2: Provider file exposes a factory built from Settings
  Example: permit_session/providers/store/redis.py has create_backend(settings)
           ServiceContainer imports it and initializes the result

Store fallback:
  STORE_BACKEND=redis and Redis unreachable at startup
    → STORE_FALLBACK_TO_MEMORY=true: memory backend (single process only)
    → STORE_FALLBACK_TO_MEMORY=false: ServiceInitializationError

USAGE:

  container = ServiceContainer(settings)
  await container.initialize()
  engine = container.get_engine()
  result = await engine.handle_message(message)
"""

import importlib
import logging
import time
from typing import Any, Callable, Optional

from permit_session.config.settings import Settings
from permit_session.core.circuit_breaker import CircuitBreaker
from permit_session.core.deduplicator import Deduplicator, ProcessedMessageRegistry
from permit_session.core.distributed_lock import DistributedLock
from permit_session.core.error_recovery import ErrorTracker, RecoveryPolicy
from permit_session.core.exceptions import ServiceInitializationError, StoreError
from permit_session.core.rate_limiter import RateLimiter
from permit_session.core.security import SecurityValidator
from permit_session.core.session_store import SessionStore
from permit_session.core.state_machine import StateMachine
from permit_session.pipeline.dialogue import DialogueFlow
from permit_session.pipeline.engine import ConversationEngine
from permit_session.pipeline.extraction import ExtractionService
from permit_session.providers.extraction.base import IExtractionProvider
from permit_session.providers.extraction.pattern import PatternExtractionProvider
from permit_session.providers.messaging.base import IMessageSender
from permit_session.providers.store.base import IStoreBackend
from permit_session.providers.store.memory import MemoryStoreBackend

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Builds every engine component from Settings.

    Pre-built providers (tests, embedding applications) can be passed in;
    they are initialized but not re-imported.
    """

    def __init__(
        self,
        settings: Settings,
        backend: Optional[IStoreBackend] = None,
        sender: Optional[IMessageSender] = None,
        extraction_provider: Optional[IExtractionProvider] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._clock = clock

        self._backend: Optional[IStoreBackend] = backend
        self._sender: Optional[IMessageSender] = sender
        self._extraction_provider: Optional[IExtractionProvider] = extraction_provider
        self._session_store: Optional[SessionStore] = None
        self._breaker: Optional[CircuitBreaker] = None
        self._recovery: Optional[RecoveryPolicy] = None
        self._engine: Optional[ConversationEngine] = None
        self.store_fallback_active = False

        logger.info("ServiceContainer instantiated")

    async def initialize(self) -> None:
        """Load providers and assemble the engine."""
        try:
            logger.info("=" * 80)
            logger.info("INITIALIZING SERVICE CONTAINER")
            logger.info("=" * 80)

            self._backend = await self._init_backend()

            if self._sender is None:
                self._sender = self._load_provider(
                    provider_type="messaging",
                    provider_name=self.settings.messaging_provider,
                    module_path="permit_session.providers.messaging",
                )
            await self._sender.initialize()

            if self._extraction_provider is None:
                self._extraction_provider = self._load_provider(
                    provider_type="extraction",
                    provider_name=self.settings.extraction_provider,
                    module_path="permit_session.providers.extraction",
                )
            await self._extraction_provider.initialize()

            self._engine = self._assemble()

            logger.info("=" * 80)
            logger.info("✓ ServiceContainer initialized successfully")
            logger.info("=" * 80)

        except ServiceInitializationError:
            raise
        except Exception as e:
            logger.error(
                f"ServiceContainer initialization failed: {str(e)}",
                exc_info=True,
            )
            raise ServiceInitializationError(
                f"Failed to initialize container: {str(e)}"
            )

    async def _init_backend(self) -> IStoreBackend:
        if self._backend is not None:
            await self._backend.initialize()
            return self._backend

        backend = self._load_provider(
            provider_type="store",
            provider_name=self.settings.store_backend,
            module_path="permit_session.providers.store",
            factory="create_backend",
        )
        try:
            await backend.initialize()
            return backend
        except StoreError as e:
            if not self.settings.store_fallback_to_memory:
                raise ServiceInitializationError(f"Store backend unavailable: {str(e)}")
            logger.warning(
                f"⚠️  Store backend '{self.settings.store_backend}' unavailable ({e}); "
                "falling back to in-memory store (single process only)"
            )
            await backend.shutdown()
            fallback = MemoryStoreBackend(
                max_entries=self.settings.memory_store_max_entries,
                clock=self._clock,
            )
            await fallback.initialize()
            self.store_fallback_active = True
            return fallback

    def _load_provider(
        self,
        provider_type: str,
        provider_name: str,
        module_path: str,
        factory: str = "create_provider",
    ) -> Any:
        """
        Layer 1: provider_name from .env determines which file
        Layer 2: the file's factory builds the instance from Settings
        """
        full_path = f"{module_path}.{provider_name}"
        logger.info(f"[Layer 1] Loading {provider_type} provider: {full_path}")
        try:
            provider_module = importlib.import_module(full_path)
        except ImportError as e:
            raise ServiceInitializationError(
                f"Failed to import {provider_type} provider '{provider_name}' "
                f"from {full_path}: {str(e)}"
            )

        if not hasattr(provider_module, factory):
            raise ServiceInitializationError(
                f"Provider module {full_path} does not export '{factory}'"
            )

        instance = getattr(provider_module, factory)(self.settings)
        logger.info(f"[Layer 2] Got {instance.__class__.__name__}")
        return instance

    def _assemble(self) -> ConversationEngine:
        settings = self.settings
        clock = self._clock

        state_machine = StateMachine(clock=clock)
        validator = SecurityValidator()
        self._session_store = SessionStore(self._backend, settings, clock=clock)
        lock = DistributedLock(
            self._backend,
            lease_ms=settings.lock_lease_ms,
            wait_seconds=settings.lock_wait_seconds,
        )
        self._breaker = CircuitBreaker(
            name="extraction",
            failure_threshold=settings.extraction_failure_threshold,
            recovery_timeout=settings.extraction_recovery_timeout,
        )
        tracker = ErrorTracker(
            threshold=settings.error_threshold_per_hour,
            suspension_seconds=settings.suspension_seconds,
            clock=clock,
        )
        self._recovery = RecoveryPolicy(
            self._sender,
            self._session_store,
            lock,
            state_machine,
            settings=settings,
            tracker=tracker,
            clock=clock,
        )

        fallback = self._extraction_provider
        if not isinstance(fallback, PatternExtractionProvider):
            fallback = PatternExtractionProvider()

        return ConversationEngine(
            session_store=self._session_store,
            dialogue=DialogueFlow(state_machine, self._session_store, validator, settings),
            extraction=ExtractionService(self._extraction_provider, fallback, self._breaker),
            deduplicator=Deduplicator(
                window_seconds=settings.dedup_window_seconds,
                max_entries=settings.dedup_max_entries,
                clock=clock,
            ),
            registry=ProcessedMessageRegistry(self._backend, settings.message_marker_ttl_seconds),
            rate_limiter=RateLimiter.from_settings(self._backend, settings, clock=clock),
            lock=lock,
            validator=validator,
            recovery=self._recovery,
            sender=self._sender,
            settings=settings,
            clock=clock,
        )

    async def shutdown(self) -> None:
        """Shutdown engine and providers."""
        logger.info("Shutting down ServiceContainer...")

        if self._engine is not None:
            await self._engine.shutdown()

        providers = [
            ("Extraction", self._extraction_provider),
            ("Messaging", self._sender),
            ("Store", self._backend),
        ]
        for name, provider in providers:
            if provider is None:
                continue
            try:
                await provider.shutdown()
                logger.info(f"✓ {name} shutdown complete")
            except Exception as e:
                logger.error(f"Error shutting down {name}: {str(e)}")

        logger.info("✓ ServiceContainer shutdown complete")

    # ========================================================================
    # ACCESSOR METHODS
    # ========================================================================

    def get_engine(self) -> ConversationEngine:
        if self._engine is None:
            raise RuntimeError("Engine not initialized")
        return self._engine

    def get_backend(self) -> IStoreBackend:
        if self._backend is None:
            raise RuntimeError("Store backend not initialized")
        return self._backend

    def get_sender(self) -> IMessageSender:
        if self._sender is None:
            raise RuntimeError("Message sender not initialized")
        return self._sender

    def get_session_store(self) -> SessionStore:
        if self._session_store is None:
            raise RuntimeError("Session store not initialized")
        return self._session_store

    def get_recovery(self) -> RecoveryPolicy:
        if self._recovery is None:
            raise RuntimeError("Recovery policy not initialized")
        return self._recovery

    def get_breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            raise RuntimeError("Circuit breaker not initialized")
        return self._breaker
