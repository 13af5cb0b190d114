# permit_session/api/routes.py

import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from permit_session import __version__
from permit_session.config.constants import API_PREFIX
from permit_session.config.settings import Settings
from permit_session.api.dependencies import (
    get_container,
    get_engine,
    get_request_context,
    get_settings,
)
from permit_session.container.service_container import ServiceContainer
from permit_session.pipeline.engine import ConversationEngine
from permit_session.pipeline.schemas import EngineResult, InboundMessage
from permit_session.utils.helpers import mask_identity

logger = logging.getLogger(__name__)
router = APIRouter(tags=["sessions"])


# ============================================================================
# INBOUND MESSAGES
# ============================================================================

@router.post(
    f"{API_PREFIX}/messages",
    response_model=EngineResult,
    summary="Process one inbound message",
    description="Hand-off point for the transport: one WhatsApp text message per call",
)
async def receive_message(
    message: InboundMessage,
    engine: ConversationEngine = Depends(get_engine),
    request_context: dict = Depends(get_request_context),
) -> EngineResult:
    """
    WORKFLOW:
    1. Validate the inbound contract (pydantic)
    2. engine.handle_message(message)
    3. Return the EngineResult (status, state, replies, error id)

    Replies are already delivered through the messaging provider; they are
    echoed in the response for the caller's records.
    """
    start_time = time.time()
    request_id = request_context["request_id"]

    result = await engine.handle_message(message)

    elapsed_ms = (time.time() - start_time) * 1000
    logger.info(
        f"[{request_id}] {mask_identity(message.identity)} → {result.status.value} "
        f"state={result.state_key} ({elapsed_ms:.0f}ms)"
    )
    return result


# ============================================================================
# MONITORING
# ============================================================================

@router.get("/health", summary="Liveness and dependency status")
async def health_check(
    container: ServiceContainer = Depends(get_container),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    store_ok = False
    try:
        store_ok = await container.get_backend().ping()
    except Exception as e:
        logger.warning(f"⚠️  Health check store ping failed: {e}")

    breaker = container.get_breaker()
    return {
        "status": "healthy" if store_ok else "degraded",
        "version": __version__,
        "environment": settings.environment,
        "store": {
            "backend": container.get_backend().__class__.__name__,
            "reachable": store_ok,
            "fallback_active": container.store_fallback_active,
        },
        "extraction_breaker": {
            "state": breaker.get_state(),
            "failures": breaker.get_failure_count(),
        },
    }


@router.get(
    f"{API_PREFIX}/statistics",
    status_code=status.HTTP_200_OK,
    summary="Error tracker snapshot",
)
async def error_statistics(container: ServiceContainer = Depends(get_container)) -> Dict[str, Any]:
    """Read-only view of the error tracker (identities tracked, recent errors)."""
    return container.get_recovery().get_statistics().model_dump(by_alias=True)
