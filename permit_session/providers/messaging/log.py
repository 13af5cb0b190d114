"""
FILE: permit_session/providers/messaging/log.py

Development sender: writes every outbound message to the log and keeps the
most recent ones in memory. MESSAGING_PROVIDER=log (default).
"""

import logging
from collections import deque
from typing import Deque, List, Optional, Tuple

from permit_session.config.settings import Settings
from permit_session.pipeline.schemas import OutboundMessage
from permit_session.providers.messaging.base import IMessageSender
from permit_session.utils.helpers import mask_identity

logger = logging.getLogger(__name__)

SENT_HISTORY_LIMIT = 1000


class LogMessageSender(IMessageSender):
    """Sender that only logs."""

    name = "log"

    def __init__(self, history_limit: int = SENT_HISTORY_LIMIT) -> None:
        self.sent: Deque[Tuple[str, OutboundMessage]] = deque(maxlen=history_limit)
        self.read_receipts: List[str] = []

    async def initialize(self) -> None:
        logger.info("✓ LogMessageSender initialized (messages are logged, not delivered)")

    async def send(self, identity: str, message: OutboundMessage) -> Optional[str]:
        self.sent.append((identity, message))
        logger.info(f"→ {mask_identity(identity)}: {message.render_text()[:200]!r}")
        return None

    async def mark_read(self, message_id: str) -> None:
        self.read_receipts.append(message_id)

    async def shutdown(self) -> None:
        logger.info("LogMessageSender shutdown")

    def texts_for(self, identity: str) -> List[str]:
        """Rendered texts sent to one identity, oldest first."""
        return [message.render_text() for to, message in self.sent if to == identity]


def create_provider(settings: Settings) -> LogMessageSender:
    """Factory used by ServiceContainer."""
    return LogMessageSender()
