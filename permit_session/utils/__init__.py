"""Utility helpers shared across the engine."""

from permit_session.utils.helpers import (
    async_retry,
    generate_error_id,
    generate_request_id,
    mask_identity,
    normalize_identity,
    to_base36,
)

__all__ = [
    "async_retry",
    "generate_error_id",
    "generate_request_id",
    "mask_identity",
    "normalize_identity",
    "to_base36",
]
