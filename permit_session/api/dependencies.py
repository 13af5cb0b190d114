"""
================================================================================
FILE: permit_session/api/dependencies.py
================================================================================

PURPOSE:
    FastAPI dependency injection functions. Route handlers receive the
    settings, the ServiceContainer and the ConversationEngine through
    Depends(); tests override them with app.dependency_overrides.

DEPENDENCY CHAIN:
    get_settings()
    get_container()
    └─ get_engine()        depends on get_container
    get_request_context()  request_id from the middleware

KEY FACTS:
    - Everything lives on app.state (set by main.create_app / startup)
    - Missing container → 503 (startup failed or still running)
"""

import logging
from typing import Any, Dict

from fastapi import Depends, HTTPException, Request, status

from permit_session.config.settings import Settings
from permit_session.container.service_container import ServiceContainer
from permit_session.pipeline.engine import ConversationEngine
from permit_session.utils.helpers import generate_request_id

logger = logging.getLogger(__name__)


async def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        logger.error("Settings not available")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Service initialization failed",
        )
    return settings


async def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        logger.error("Container not available")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service container not initialized",
        )
    return container


async def get_engine(container: ServiceContainer = Depends(get_container)) -> ConversationEngine:
    """The assembled ConversationEngine (503 until startup completes)."""
    try:
        return container.get_engine()
    except RuntimeError as e:
        logger.error(f"Engine not available: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conversation engine not initialized",
        )


async def get_request_context(request: Request) -> Dict[str, Any]:
    return {
        "request_id": getattr(request.state, "request_id", None) or generate_request_id(),
    }
