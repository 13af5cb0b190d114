from abc import ABC, abstractmethod
from typing import Optional

from permit_session.pipeline.schemas import OutboundMessage


class IMessageSender(ABC):
    """Abstract base class for outbound message transports."""

    name: str = "base"

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the sender."""
        pass

    @abstractmethod
    async def send(self, identity: str, message: OutboundMessage) -> Optional[str]:
        """
        Deliver one message.

        Returns:
            Provider message id when the transport reports one

        Raises:
            DeliveryError: message could not be delivered
        """
        pass

    async def send_direct(self, identity: str, text: str) -> Optional[str]:
        """Last-resort plain text path used when a recovery routine fails."""
        return await self.send(identity, OutboundMessage.plain(text))

    @abstractmethod
    async def mark_read(self, message_id: str) -> None:
        """Read receipt. Failures are logged, never raised."""
        pass

    @abstractmethod
    async def shutdown(self) -> None:
        """Release sender resources."""
        pass
