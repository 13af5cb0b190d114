"""Outbound message transports."""

from permit_session.providers.messaging.base import IMessageSender
from permit_session.providers.messaging.http import HttpMessageSender
from permit_session.providers.messaging.log import LogMessageSender

__all__ = [
    "IMessageSender",
    "HttpMessageSender",
    "LogMessageSender",
]
