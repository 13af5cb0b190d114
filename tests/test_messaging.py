"""Outbound senders."""

import json

import httpx
import pytest

from permit_session.core.exceptions import ConfigurationError, DeliveryError
from permit_session.pipeline import prompts
from permit_session.pipeline.schemas import OutboundMessage
from permit_session.providers.messaging.http import HttpMessageSender
from permit_session.providers.messaging.log import LogMessageSender

from tests.conftest import IDENTITY


def whatsapp_sender(settings, handler):
    settings = settings.model_copy(
        update={"whatsapp_phone_number_id": "10998877", "whatsapp_access_token": "token"}
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpMessageSender(settings, client=client)


class TestHttpMessageSender:
    async def test_send_renders_numbered_text(self, settings):
        posted = []

        def handler(req: httpx.Request) -> httpx.Response:
            posted.append((str(req.url), json.loads(req.content)))
            return httpx.Response(200, json={"messages": [{"id": "wamid.OUT1"}]})

        sender = whatsapp_sender(settings, handler)
        await sender.initialize()

        message_id = await sender.send(IDENTITY, prompts.main_menu())

        assert message_id == "wamid.OUT1"
        url, payload = posted[0]
        assert url == "https://graph.facebook.com/v17.0/10998877/messages"
        assert payload["to"] == IDENTITY
        assert "1. 📝 Nuevo permiso" in payload["text"]["body"]

    async def test_error_status_is_not_retried(self, settings):
        calls = []

        def handler(req):
            calls.append(req)
            return httpx.Response(400, json={"error": {"message": "bad"}})

        sender = whatsapp_sender(settings, handler)
        await sender.initialize()

        with pytest.raises(DeliveryError, match="returned 400"):
            await sender.send(IDENTITY, OutboundMessage.plain("hola"))
        assert len(calls) == 1

    async def test_transport_error_retried_then_raised(self, settings):
        calls = []

        def handler(req):
            calls.append(req)
            raise httpx.ConnectError("connection refused")

        sender = whatsapp_sender(settings, handler)
        await sender.initialize()

        with pytest.raises(DeliveryError, match="unreachable"):
            await sender.send(IDENTITY, OutboundMessage.plain("hola"))
        assert len(calls) == 3

    async def test_read_receipt_failure_is_logged(self, settings):
        sender = whatsapp_sender(settings, lambda req: httpx.Response(500))
        await sender.initialize()
        await sender.mark_read("wamid.IN1")

    async def test_requires_credentials(self, settings):
        with pytest.raises(ConfigurationError):
            await HttpMessageSender(settings).initialize()


class TestLogMessageSender:
    async def test_records_history(self):
        sender = LogMessageSender(history_limit=2)
        for text in ("uno", "dos", "tres"):
            await sender.send(IDENTITY, OutboundMessage.plain(text))
        await sender.send_direct("5210000000000", "directo")

        assert sender.texts_for(IDENTITY) == ["tres"]
        assert sender.texts_for("5210000000000") == ["directo"]
