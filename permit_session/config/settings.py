"""
================================================================================
FILE: permit_session/config/settings.py
================================================================================

PURPOSE:
    Engine settings loaded from environment variables (and .env).
    Uses Pydantic BaseSettings for validation and type hints.
    Single source of truth for all engine configuration.

WORKFLOW:
    1. At startup, load from environment variables (.env file or system env)
    2. Validate all settings (type checking, range validation)
    3. Fail fast if settings are invalid
    4. Hand the Settings object to ServiceContainer, which builds every
       component from it

INPUTS:
    - Environment variables, e.g.
        STORE_BACKEND=redis
        REDIS_URL=redis://localhost:6379/0
        SESSION_TTL_SECONDS=86400
        RATE_LIMIT_USER_POINTS=50
        EXTRACTION_PROVIDER=http
        EXTRACTION_URL=http://extractor:8080/extract
        MESSAGING_PROVIDER=http
        WHATSAPP_ACCESS_TOKEN=...

CONFIGURATION CATEGORIES:
    1. Store backend (redis | memory) and Redis connection
    2. Session lifetime
    3. Lock lease
    4. Deduplication
    5. Rate limits (per identity, global, per state)
    6. Error tracking and recovery
    7. Extraction collaborator
    8. Outbound messaging
    9. Support contact
    10. Server / logging / environment

KEY FACTS:
    - Pydantic validates types and ranges at construction
    - Env vars override defaults; .env is loaded with python-dotenv first
    - populate_by_name lets tests pass snake_case names directly

TESTING ENVIRONMENT:
    - Override settings in tests: Settings(store_backend="memory")
"""

from __future__ import annotations

import os

from pathlib import Path
from typing import Any, Dict, Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from permit_session.config import constants

_CWD_ENV = Path(os.getcwd()) / ".env"
_REPO_ROOT_ENV = Path(__file__).resolve().parents[2] / ".env"
_ENV_PATH = _CWD_ENV if _CWD_ENV.exists() else _REPO_ROOT_ENV

load_dotenv(dotenv_path=_ENV_PATH, override=False)


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables + .env.

    All fields have aliases to match .env variable names.
    Supports both Redis URL and HOST/PORT/DB/PASSWORD configurations.
    """

    # ========================================================================
    # Pydantic v2 config
    # ========================================================================

    model_config = SettingsConfigDict(
        env_file=str(_ENV_PATH),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "ENVIRONMENT": "development",
                    "STORE_BACKEND": "redis",
                    "REDIS_URL": "redis://localhost:6379/0",
                    "EXTRACTION_PROVIDER": "pattern",
                    "MESSAGING_PROVIDER": "log",
                },
            ],
        },
    )

    # ========================================================================
    # PROVIDER SELECTION
    # ========================================================================

    store_backend: Literal["redis", "memory"] = Field(
        default="redis",
        alias="STORE_BACKEND",
        description="Key-value store backend: redis | memory",
    )

    store_fallback_to_memory: bool = Field(
        default=True,
        alias="STORE_FALLBACK_TO_MEMORY",
        description="Use the in-memory backend when Redis cannot be reached at startup",
    )

    extraction_provider: Literal["http", "pattern"] = Field(
        default="pattern",
        alias="EXTRACTION_PROVIDER",
        description="Extraction collaborator: http | pattern",
    )

    messaging_provider: Literal["http", "log"] = Field(
        default="log",
        alias="MESSAGING_PROVIDER",
        description="Outbound transport: http | log",
    )

    # ========================================================================
    # REDIS - Support BOTH URL and HOST/PORT patterns
    # ========================================================================

    redis_url: Optional[str] = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection URL (e.g., redis://localhost:6379)",
    )

    redis_host: str = Field(
        default="localhost",
        alias="REDIS_HOST",
        description="Redis host",
    )

    redis_port: int = Field(
        default=6379,
        ge=1,
        le=65535,
        alias="REDIS_PORT",
        description="Redis port",
    )

    redis_db: int = Field(
        default=0,
        ge=0,
        le=15,
        alias="REDIS_DB",
        description="Redis database number",
    )

    redis_password: Optional[str] = Field(
        default=None,
        alias="REDIS_PASSWORD",
        description="Redis password (optional)",
    )

    redis_pool_size: int = Field(
        default=50,
        ge=5,
        le=500,
        alias="REDIS_POOL_SIZE",
        description="Redis connection pool size",
    )

    redis_timeout: float = Field(
        default=2.0,
        ge=0.1,
        le=10.0,
        alias="REDIS_TIMEOUT",
        description="Redis operation timeout (seconds)",
    )

    store_retry_attempts: int = Field(
        default=constants.RETRY_MAX_ATTEMPTS,
        ge=1,
        le=10,
        alias="STORE_RETRY_ATTEMPTS",
        description="Attempts per store operation before StoreError",
    )

    store_retry_delay_seconds: float = Field(
        default=constants.RETRY_DELAY_SECONDS,
        ge=0.0,
        le=5.0,
        alias="STORE_RETRY_DELAY_SECONDS",
        description="Linear backoff step between store retries (seconds)",
    )

    memory_store_max_entries: int = Field(
        default=constants.MEMORY_STORE_MAX_ENTRIES,
        ge=100,
        alias="MEMORY_STORE_MAX_ENTRIES",
        description="Entry cap for the in-memory backend",
    )

    @computed_field  # type: ignore[misc]
    @property
    def resolved_redis_url(self) -> str:
        """
        Resolve Redis URL from either explicit URL or HOST/PORT/PASSWORD.

        Priority:
        1. If REDIS_URL provided → use it directly
        2. Else → construct from REDIS_HOST:REDIS_PORT
        """
        if self.redis_url:
            return self.redis_url

        password_part = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{password_part}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # ========================================================================
    # SESSION / LOCK
    # ========================================================================

    session_ttl_seconds: int = Field(
        default=constants.SESSION_TTL_SECONDS,
        ge=60,
        alias="SESSION_TTL_SECONDS",
        description="Session lifetime after the last save (seconds)",
    )

    lock_lease_ms: int = Field(
        default=constants.LOCK_LEASE_MS,
        ge=100,
        le=60000,
        alias="LOCK_LEASE_MS",
        description="Per-identity lock lease (milliseconds)",
    )

    lock_wait_seconds: float = Field(
        default=constants.LOCK_WAIT_SECONDS,
        ge=0.0,
        le=30.0,
        alias="LOCK_WAIT_SECONDS",
        description="How long a message waits for a busy identity lock",
    )

    # ========================================================================
    # DEDUPLICATION
    # ========================================================================

    dedup_window_seconds: int = Field(
        default=constants.DEDUP_WINDOW_SECONDS,
        ge=1,
        le=3600,
        alias="DEDUP_WINDOW_SECONDS",
        description="Fingerprint cache window (seconds)",
    )

    dedup_max_entries: int = Field(
        default=constants.DEDUP_MAX_ENTRIES,
        ge=10,
        alias="DEDUP_MAX_ENTRIES",
        description="Fingerprint cache size cap",
    )

    dedup_sweep_interval_seconds: int = Field(
        default=constants.DEDUP_SWEEP_INTERVAL_SECONDS,
        ge=1,
        alias="DEDUP_SWEEP_INTERVAL_SECONDS",
        description="Maintenance sweep interval (seconds)",
    )

    message_marker_ttl_seconds: int = Field(
        default=constants.MESSAGE_MARKER_TTL_SECONDS,
        ge=60,
        alias="MESSAGE_MARKER_TTL_SECONDS",
        description="Provider message-id marker lifetime (seconds)",
    )

    # ========================================================================
    # RATE LIMITS
    # ========================================================================

    rate_limit_user_points: int = Field(
        default=constants.RATE_LIMIT_USER_POINTS,
        ge=1,
        alias="RATE_LIMIT_USER_POINTS",
        description="Messages per identity per window",
    )

    rate_limit_user_duration_seconds: int = Field(
        default=constants.RATE_LIMIT_USER_DURATION_SECONDS,
        ge=1,
        alias="RATE_LIMIT_USER_DURATION_SECONDS",
        description="Per-identity window (seconds)",
    )

    rate_limit_global_points: int = Field(
        default=constants.RATE_LIMIT_GLOBAL_POINTS,
        ge=1,
        alias="RATE_LIMIT_GLOBAL_POINTS",
        description="Messages across all identities per window",
    )

    rate_limit_global_duration_seconds: int = Field(
        default=constants.RATE_LIMIT_GLOBAL_DURATION_SECONDS,
        ge=1,
        alias="RATE_LIMIT_GLOBAL_DURATION_SECONDS",
        description="Global window (seconds)",
    )

    rate_limit_state_points: int = Field(
        default=constants.RATE_LIMIT_STATE_POINTS,
        ge=1,
        alias="RATE_LIMIT_STATE_POINTS",
        description="Messages per identity per state per window",
    )

    rate_limit_state_duration_seconds: int = Field(
        default=constants.RATE_LIMIT_STATE_DURATION_SECONDS,
        ge=1,
        alias="RATE_LIMIT_STATE_DURATION_SECONDS",
        description="Per-state window (seconds)",
    )

    rate_limit_retention_windows: int = Field(
        default=constants.RATE_LIMIT_RETENTION_WINDOWS,
        ge=1,
        le=100,
        alias="RATE_LIMIT_RETENTION_WINDOWS",
        description="Windows a counter bucket is retained before pruning",
    )

    # ========================================================================
    # ERROR TRACKING / RECOVERY
    # ========================================================================

    error_threshold_per_hour: int = Field(
        default=constants.ERROR_THRESHOLD_PER_HOUR,
        ge=1,
        alias="ERROR_THRESHOLD_PER_HOUR",
        description="Errors in the trailing hour above which an identity is suspended",
    )

    suspension_seconds: int = Field(
        default=constants.SUSPENSION_SECONDS,
        ge=1,
        alias="SUSPENSION_SECONDS",
        description="Suspension duration (seconds)",
    )

    store_failure_backoff_cap_minutes: int = Field(
        default=constants.STORE_FAILURE_BACKOFF_CAP_MINUTES,
        ge=1,
        alias="STORE_FAILURE_BACKOFF_CAP_MINUTES",
        description="Upper bound of the suggested wait after a store failure",
    )

    schedule_restore_notice: bool = Field(
        default=True,
        alias="SCHEDULE_RESTORE_NOTICE",
        description="Send a 'system restored' notice after a store failure",
    )

    # ========================================================================
    # EXTRACTION COLLABORATOR
    # ========================================================================

    extraction_url: Optional[str] = Field(
        default=None,
        alias="EXTRACTION_URL",
        description="Extraction service endpoint (http provider)",
    )

    extraction_api_key: Optional[str] = Field(
        default=None,
        alias="EXTRACTION_API_KEY",
        description="Bearer token for the extraction service",
    )

    extraction_timeout: float = Field(
        default=10.0,
        ge=0.5,
        le=60.0,
        alias="EXTRACTION_TIMEOUT",
        description="Extraction call timeout (seconds)",
    )

    extraction_failure_threshold: int = Field(
        default=constants.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        ge=1,
        alias="EXTRACTION_FAILURE_THRESHOLD",
        description="Failures before the extraction circuit opens",
    )

    extraction_recovery_timeout: float = Field(
        default=constants.CIRCUIT_BREAKER_RECOVERY_TIMEOUT_SECONDS,
        ge=1.0,
        alias="EXTRACTION_RECOVERY_TIMEOUT",
        description="Seconds before a half-open extraction probe",
    )

    # ========================================================================
    # OUTBOUND MESSAGING
    # ========================================================================

    whatsapp_api_url: str = Field(
        default="https://graph.facebook.com/v17.0",
        alias="WHATSAPP_API_URL",
        description="Messaging API base URL",
    )

    whatsapp_phone_number_id: Optional[str] = Field(
        default=None,
        alias="WHATSAPP_PHONE_NUMBER_ID",
        description="Sender phone number id",
    )

    whatsapp_access_token: Optional[str] = Field(
        default=None,
        alias="WHATSAPP_ACCESS_TOKEN",
        description="Messaging API bearer token",
    )

    messaging_timeout: float = Field(
        default=10.0,
        ge=0.5,
        le=60.0,
        alias="MESSAGING_TIMEOUT",
        description="Outbound HTTP timeout (seconds)",
    )

    # ========================================================================
    # SUPPORT CONTACT
    # ========================================================================

    support_email: str = Field(
        default="contacto@permisosdigitales.com.mx",
        alias="SUPPORT_EMAIL",
        description="Support contact shown in recovery messages",
    )

    support_web_url: str = Field(
        default="https://permisosdigitales.com.mx",
        alias="SUPPORT_WEB_URL",
        description="Web portal shown as an alternative channel",
    )

    # ========================================================================
    # SERVER / LOGGING / ENVIRONMENT
    # ========================================================================

    server_host: str = Field(
        default="127.0.0.1",
        alias="BACKEND_HOST",
        description="Server host",
    )

    server_port: int = Field(
        default=8001,
        ge=1024,
        le=65535,
        alias="BACKEND_PORT",
        description="Server port",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    log_format: Literal["json", "text"] = Field(
        default="text",
        alias="LOG_FORMAT",
        description="Logging format: json or text",
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        alias="ENVIRONMENT",
        description="Environment: development, staging, production",
    )

    # ========================================================================
    # VALIDATORS
    # ========================================================================

    @field_validator(
        "extraction_api_key", "whatsapp_access_token", "redis_password"
    )
    @classmethod
    def _validate_secrets(cls, v: Optional[str]) -> Optional[str]:
        """Validate secrets are non-empty if provided."""
        if v is not None and not v.strip():
            raise ValueError("Secret must be non-empty if provided")
        return v

    # ========================================================================
    # HELPER METHODS
    # ========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert settings to dictionary with secrets redacted.

        Returns:
            Settings dictionary with secrets masked
        """
        d = self.model_dump()

        for k in (
            "extraction_api_key",
            "whatsapp_access_token",
            "redis_password",
        ):
            if d.get(k):
                d[k] = "***REDACTED***"

        if self.redis_password and d.get("resolved_redis_url"):
            d["resolved_redis_url"] = d["resolved_redis_url"].replace(
                self.redis_password, "***REDACTED***"
            )

        return d

    def get_store_config(self) -> Dict[str, Any]:
        """Store configuration for ServiceContainer."""
        return {
            "backend": self.store_backend,
            "redis_url": self.resolved_redis_url,
            "redis_timeout": self.redis_timeout,
            "redis_pool_size": self.redis_pool_size,
            "retry_attempts": self.store_retry_attempts,
            "retry_delay_seconds": self.store_retry_delay_seconds,
            "fallback_to_memory": self.store_fallback_to_memory,
        }

    def get_rate_limit_config(self) -> Dict[str, Any]:
        """Rate limit quotas per scope."""
        return {
            "user": (self.rate_limit_user_points, self.rate_limit_user_duration_seconds),
            "global": (self.rate_limit_global_points, self.rate_limit_global_duration_seconds),
            "state": (self.rate_limit_state_points, self.rate_limit_state_duration_seconds),
            "retention_windows": self.rate_limit_retention_windows,
        }
