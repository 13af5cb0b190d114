"""Extraction: pattern provider, HTTP provider, breaker and fallback."""

import json

import httpx
import pytest

from permit_session.core.circuit_breaker import CircuitBreaker
from permit_session.core.exceptions import CircuitBreakerOpenError, ConfigurationError, ExtractionError
from permit_session.pipeline.extraction import ExtractionService
from permit_session.pipeline.schemas import ExtractionRequest, ExtractionResult, FieldKey, Intent
from permit_session.providers.extraction.base import IExtractionProvider
from permit_session.providers.extraction.http import HttpExtractionProvider
from permit_session.providers.extraction.pattern import PatternExtractionProvider

URL = "http://extractor.test/extract"


def request(text, expected=None):
    return ExtractionRequest(
        raw_text=text,
        current_state_key="form:new_permit",
        expected_field=expected,
    )


def http_provider(settings, handler):
    settings = settings.model_copy(update={"extraction_url": URL})
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpExtractionProvider(settings, client=client)


class FailingProvider(IExtractionProvider):
    name = "http"

    def __init__(self):
        self.calls = 0

    async def initialize(self):
        pass

    async def shutdown(self):
        pass

    async def extract(self, request):
        self.calls += 1
        raise ExtractionError("Extraction service unreachable: connect timeout")


class TestPatternProvider:
    async def test_free_text_answer_taken_whole(self):
        result = await PatternExtractionProvider().extract(request("Calle 5 de Mayo 20", FieldKey.DOMICILIO))
        assert result.extracted_fields == {"domicilio": "Calle 5 de Mayo 20"}

    async def test_patterns_in_free_text(self):
        result = await PatternExtractionProvider().extract(
            request("mi curp es PERJ850124HDFRZN01 y el carro es rojo 2019", FieldKey.CURP_RFC)
        )
        assert result.extracted_fields == {
            "curp_rfc": "PERJ850124HDFRZN01",
            "ano_modelo": "2019",
            "color": "rojo",
        }

    async def test_vin_only_without_curp(self):
        found = PatternExtractionProvider.match_patterns("serie 1HGCM82633A123456")
        assert found == {"numero_serie": "1HGCM82633A123456"}

    @pytest.mark.parametrize(
        "text, intent",
        [
            ("ya no quiero", Intent.CANCELLING),
            ("¿cuánto cuesta?", Intent.ASKING_QUESTION),
            ("Toyota", Intent.PROVIDING_INFO),
        ],
    )
    async def test_intent(self, text, intent):
        result = await PatternExtractionProvider().extract(request(text, FieldKey.MARCA))
        assert result.intent is intent


class TestHttpProvider:
    async def test_posts_camel_case_and_parses_result(self, settings):
        seen = {}

        def handler(req: httpx.Request) -> httpx.Response:
            seen.update(json.loads(req.content))
            return httpx.Response(
                200,
                json={"extractedFields": {"marca": "Nissan"}, "intent": "providing_info"},
            )

        provider = http_provider(settings, handler)
        await provider.initialize()

        result = await provider.extract(request("Nissan", FieldKey.MARCA))

        assert seen["rawText"] == "Nissan"
        assert seen["expectedField"] == "marca"
        assert result.extracted_fields == {"marca": "Nissan"}

    async def test_error_status(self, settings):
        provider = http_provider(settings, lambda req: httpx.Response(502))
        await provider.initialize()
        with pytest.raises(ExtractionError, match="returned 502"):
            await provider.extract(request("Nissan"))

    async def test_unreachable(self, settings):
        def handler(req):
            raise httpx.ConnectError("connection refused")

        provider = http_provider(settings, handler)
        await provider.initialize()
        with pytest.raises(ExtractionError, match="unreachable"):
            await provider.extract(request("Nissan"))

    async def test_malformed_body(self, settings):
        provider = http_provider(settings, lambda req: httpx.Response(200, text="<html>"))
        await provider.initialize()
        with pytest.raises(ExtractionError, match="malformed"):
            await provider.extract(request("Nissan"))

    async def test_requires_url(self, settings):
        with pytest.raises(ConfigurationError):
            await HttpExtractionProvider(settings).initialize()


class TestExtractionService:
    async def test_fallback_on_failure(self):
        primary = FailingProvider()
        service = ExtractionService(primary, breaker=CircuitBreaker(failure_threshold=5))

        result = await service.extract(request("Toyota", FieldKey.MARCA))

        assert result.extracted_fields == {"marca": "Toyota"}
        assert service.fallback_count == 1

    async def test_breaker_opens_and_skips_primary(self):
        primary = FailingProvider()
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        service = ExtractionService(primary, breaker=breaker)

        for _ in range(3):
            await service.extract(request("Toyota", FieldKey.MARCA))

        assert breaker.get_state() == "OPEN"
        assert primary.calls == 2
        assert service.fallback_count == 3

    async def test_breaker_half_open_probe(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30, clock=lambda: now[0])

        async def fail():
            raise ExtractionError("down")

        async def ok():
            return "ok"

        with pytest.raises(ExtractionError):
            await breaker.protect(fail)
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.protect(ok)

        now[0] = 31.0
        assert await breaker.protect(ok) == "ok"
        assert breaker.get_state() == "CLOSED"

    def test_post_process_canonicalizes(self):
        raw = ExtractionResult(
            extracted_fields={
                "curp_rfc": " perj-850124 hdfrzn01 ",
                "ano_modelo": "modelo 2019",
                "marca": "  ",
                "favorite_food": "tacos",
                "linea": None,
            }
        )
        cleaned = ExtractionService.post_process(raw)
        assert cleaned.extracted_fields == {"curp_rfc": "PERJ850124HDFRZN01", "ano_modelo": "2019"}
