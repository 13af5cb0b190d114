"""Small utilities."""

import re

import pytest

from permit_session.utils.helpers import (
    async_retry,
    generate_error_id,
    mask_identity,
    normalize_identity,
    to_base36,
)


def test_error_id_format():
    error_id = generate_error_id(1_700_000_000.0)
    assert re.fullmatch(r"ERR-[0-9A-Z]+-[0-9A-Z]{5}", error_id)
    assert error_id.split("-")[1] == to_base36(1_700_000_000_000)


def test_identity_helpers():
    assert normalize_identity("+52 1 (55) 1234-5678") == "5215512345678"
    assert mask_identity("5215512345678") == "521551****"
    assert mask_identity("") == "unknown"


async def test_async_retry_gives_up():
    calls = []

    @async_retry(max_attempts=3, delay_seconds=0, exceptions=(ConnectionError,))
    async def flaky():
        calls.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await flaky()
    assert len(calls) == 3


async def test_async_retry_does_not_catch_other_errors():
    calls = []

    @async_retry(max_attempts=3, delay_seconds=0, exceptions=(ConnectionError,))
    async def broken():
        calls.append(1)
        raise KeyError("x")

    with pytest.raises(KeyError):
        await broken()
    assert len(calls) == 1
