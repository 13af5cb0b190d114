"""
================================================================================
HELPERS - Common Utility Functions
================================================================================

PURPOSE:
--------
Provide common helper utilities:
  - Tracking / request ids
  - Identity normalization and masking for logs
  - Async retry with linear backoff

FUNCTIONS:
  - generate_request_id: Correlation id for API requests
  - generate_error_id: User-visible tracking id "ERR-<base36 time>-<5 chars>"
  - to_base36: Integer to upper-case base36
  - normalize_identity: Canonical phone-number identity
  - mask_identity: Identity safe for log lines
  - async_retry: Decorator retrying an async callable with linear backoff
================================================================================
"""

import asyncio
import logging
import re
import secrets
import string
import time
import uuid
from functools import wraps
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_BASE36_ALPHABET = string.digits + string.ascii_uppercase


def generate_request_id() -> str:
    """Correlation id for one API request."""
    return uuid.uuid4().hex


def to_base36(value: int) -> str:
    """
    Convert a non-negative integer to upper-case base36.

    Examples:
        >>> to_base36(0)
        '0'
        >>> to_base36(35)
        'Z'
        >>> to_base36(36)
        '10'
    """
    if value < 0:
        raise ValueError("to_base36 expects a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_error_id(now: Optional[float] = None) -> str:
    """
    Tracking id quoted to the user in every recovery message.

    Format: ERR-<base36 of epoch milliseconds>-<5 random base36 chars>

    Examples:
        >>> generate_error_id(0).startswith("ERR-0-")
        True
    """
    now = time.time() if now is None else now
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(5))
    return f"ERR-{to_base36(int(now * 1000))}-{suffix}"


def normalize_identity(identity: str) -> str:
    """
    Canonical identity: digits of the phone number only.

    Examples:
        >>> normalize_identity("+52 1 (55) 1234-5678")
        '5215512345678'
    """
    digits = re.sub(r"\D", "", identity or "")
    return digits or (identity or "").strip()


def mask_identity(identity: str) -> str:
    """
    Identity safe for log lines: first 6 characters then ****.

    Examples:
        >>> mask_identity("5215512345678")
        '521551****'
    """
    if not identity:
        return "unknown"
    return f"{identity[:6]}****"


def async_retry(
    max_attempts: int = 3,
    delay_seconds: float = 0.1,
    exceptions: tuple = (Exception,),
):
    """
    Decorator to retry an async function on exception.

    Implements linear backoff:
      - Attempt 1: immediate
      - Attempt 2: delay_seconds
      - Attempt 3: 2 * delay_seconds

    Args:
        max_attempts: Max number of attempts
        delay_seconds: Backoff step between attempts
        exceptions: Tuple of exceptions to catch

    Examples:
        @async_retry(max_attempts=3, delay_seconds=0.1, exceptions=(ConnectionError,))
        async def ping():
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"❌ {func.__name__} failed after {max_attempts} attempts: {str(e)}"
                        )
                        raise
                    delay = delay_seconds * attempt
                    logger.warning(
                        f"⚠️  {func.__name__} failed (attempt {attempt}/{max_attempts}). "
                        f"Retrying in {delay:.2f}s... Error: {str(e)}"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
