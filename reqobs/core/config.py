"""
Runtime configuration for the request observability pipeline.

Values are read from environment variables prefixed with REQOBS_
(and an optional .env file). Complex values such as the audit exclusion
map are given as JSON, e.g.

    REQOBS_AUDIT_EXCLUDE='{"GET": ["/healthz", "/metrics"]}'
"""

from typing import Dict, List, Optional

import grpc
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_METADATA_TO_HEADER,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    FORWARDED_IDENTIFIERS,
)


class ObservabilitySettings(BaseSettings):
    """
    Settings consumed by the middlewares, interceptors and sinks.

    All values are read once at startup; the pipeline treats them as
    read-only afterwards.
    """

    model_config = SettingsConfigDict(
        env_prefix="REQOBS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    service_name: str = "reqobs"
    log_level: str = "INFO"
    log_format: str = Field(
        default="json",
        description="Log output format: json or text",
    )
    static_log_attributes: Dict[str, str] = Field(
        default_factory=dict,
        description="Attributes bound to every request logger",
    )
    logged_headers: List[str] = Field(
        default_factory=lambda: list(FORWARDED_IDENTIFIERS.values()),
        description="Inbound headers copied into the 'headers' log attribute",
    )

    # Propagation
    request_timeout_seconds: Optional[float] = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        description="Ingress deadline applied to HTTP requests, disabled when null or 0",
    )
    mirrored_response_headers: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_METADATA_TO_HEADER),
        description="Canonical key -> response header mirrored onto responses",
    )

    # Audit
    audit_enabled: bool = True
    audit_log_dir: str = "logs/audit"
    audit_stream_name: str = "api-audit"
    audit_rotation_hours: int = 1
    audit_rotation_max_mb: int = 100
    audit_local_retention_hours: int = 24
    audit_send_timeout_seconds: float = 5.0
    audit_exclude: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="HTTP method -> URL substrings excluded from audit",
    )
    audit_operation_access_level: str = "NA"
    max_error_body_chars: int = 4096

    # Recovery
    recovery_status_code: int = 500
    grpc_recovery_status: str = "UNKNOWN"

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only json and text outputs are supported."""
        value = v.lower()
        if value not in ("json", "text"):
            raise ValueError(f"log_format must be 'json' or 'text', got '{v}'")
        return value

    @field_validator("audit_exclude")
    @classmethod
    def normalize_exclude_methods(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        """HTTP methods are matched upper-case."""
        return {method.upper(): list(patterns) for method, patterns in v.items()}

    @field_validator("recovery_status_code")
    @classmethod
    def validate_recovery_status(cls, v: int) -> int:
        """The fallback status must be an HTTP error status."""
        if not 400 <= v <= 599:
            raise ValueError(f"recovery_status_code must be 4xx or 5xx, got {v}")
        return v

    @field_validator("grpc_recovery_status")
    @classmethod
    def validate_grpc_recovery_status(cls, v: str) -> str:
        """The gRPC fallback must name a grpc.StatusCode other than OK."""
        value = v.upper()
        if value not in grpc.StatusCode.__members__ or value == "OK":
            raise ValueError(f"grpc_recovery_status must name a gRPC error status, got '{v}'")
        return value


settings = ObservabilitySettings()
