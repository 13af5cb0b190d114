"""
FILE: permit_session/providers/messaging/http.py

WhatsApp Cloud API sender over httpx. Structured prompts go out as
numbered text so every client renders them the same way.

Transport errors are retried with linear backoff (async_retry); HTTP error
statuses are not retried. Both end as DeliveryError.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from permit_session.config.constants import RETRY_DELAY_SECONDS, RETRY_MAX_ATTEMPTS
from permit_session.config.settings import Settings
from permit_session.core.exceptions import ConfigurationError, DeliveryError
from permit_session.pipeline.schemas import OutboundMessage
from permit_session.providers.messaging.base import IMessageSender
from permit_session.utils.helpers import async_retry, mask_identity

logger = logging.getLogger(__name__)


class HttpMessageSender(IMessageSender):
    """Outbound messages through the WhatsApp Cloud API."""

    name = "http"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.client = client
        self.initialized = False

    @property
    def messages_url(self) -> str:
        base = self.settings.whatsapp_api_url.rstrip("/")
        return f"{base}/{self.settings.whatsapp_phone_number_id}/messages"

    async def initialize(self) -> None:
        if not self.settings.whatsapp_phone_number_id or not self.settings.whatsapp_access_token:
            raise ConfigurationError(
                "WHATSAPP_PHONE_NUMBER_ID and WHATSAPP_ACCESS_TOKEN are required for the http sender"
            )
        if self.client is None:
            self.client = httpx.AsyncClient(
                timeout=self.settings.messaging_timeout,
                headers={
                    "Authorization": f"Bearer {self.settings.whatsapp_access_token}",
                    "Content-Type": "application/json",
                },
            )
        self.initialized = True
        logger.info("✓ HttpMessageSender initialized")

    @staticmethod
    def build_payload(identity: str, message: OutboundMessage) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": identity,
            "type": "text",
            "text": {"body": message.render_text()},
        }

    @async_retry(
        max_attempts=RETRY_MAX_ATTEMPTS,
        delay_seconds=RETRY_DELAY_SECONDS,
        exceptions=(httpx.TransportError,),
    )
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        response = await self.client.post(self.messages_url, json=payload)
        response.raise_for_status()
        return response

    async def send(self, identity: str, message: OutboundMessage) -> Optional[str]:
        if not self.initialized or self.client is None:
            raise DeliveryError("HttpMessageSender not initialized")

        try:
            response = await self._post(self.build_payload(identity, message))
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"Messaging API returned {e.response.status_code}",
                context={"identity": mask_identity(identity), "status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            raise DeliveryError(
                f"Messaging API unreachable: {str(e)}",
                context={"identity": mask_identity(identity)},
            )

        try:
            messages = response.json().get("messages") or [{}]
            return messages[0].get("id")
        except (ValueError, AttributeError):
            return None

    async def mark_read(self, message_id: str) -> None:
        if not self.initialized or self.client is None or not message_id:
            return
        try:
            response = await self.client.post(
                self.messages_url,
                json={"messaging_product": "whatsapp", "status": "read", "message_id": message_id},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"⚠️  Read receipt failed for {message_id[:24]}: {str(e)}")

    async def shutdown(self) -> None:
        if self.client is not None:
            await self.client.aclose()
        self.initialized = False
        logger.info("HttpMessageSender shutdown")


def create_provider(settings: Settings) -> HttpMessageSender:
    """Factory used by ServiceContainer."""
    return HttpMessageSender(settings)
