"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to .env file
  - Validate types and constraints at startup

Certificates and passwords are NOT configuration: every API call brings
its own PKCS#12 container. Everything here has a working default, so the
service starts against the production endpoint with no environment at all.

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var TRANSPORT__TIMEOUT_SECONDS maps to transport.timeout_seconds, and so on.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nfe_distribution.adapters.request_composer import SOAP_ACTION

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class EndpointSettings(BaseModel):
    """NFeDistribuicaoDFe web service addresses, one per environment."""

    production_url: str = Field(
        default="https://www1.nfe.fazenda.gov.br/NFeDistribuicaoDFe/NFeDistribuicaoDFe.asmx",
    )
    homologation_url: str = Field(
        default="https://hom1.nfe.fazenda.gov.br/NFeDistribuicaoDFe/NFeDistribuicaoDFe.asmx",
    )
    soap_action: str = Field(default=SOAP_ACTION)


class ProtocolSettings(BaseModel):
    """
    Request-level constants.

    `environment` selects both the endpoint and the tpAmb flag
    (production → 1, homologation → 2).
    """

    environment: Literal["production", "homologation"] = Field(default="production")
    version: str = Field(default="1.01", pattern=r"^\d+\.\d{2}$")
    max_document_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Ceiling on the decompressed size of one docZip item",
    )


class TransportSettings(BaseModel):
    """Mutual-TLS HTTP settings."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    max_response_bytes: int = Field(default=50 * 1024 * 1024, ge=1024)
    verify_peer: bool = Field(
        default=False,
        description="Validate the server chain; off by default for this endpoint only",
    )
    ca_bundle: Path | None = Field(default=None, description="PEM bundle used when verify_peer")

    @field_validator("ca_bundle")
    @classmethod
    def ca_bundle_exists(cls, value: Path | None) -> Path | None:
        if value is not None and not value.is_file():
            raise ValueError(f"CA bundle not found: {value}")
        return value


class PagingSettings(BaseModel):
    max_pages: int = Field(default=50, ge=1)
    retry_attempts: int = Field(default=3, ge=1, le=10)


class ServerSettings(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    endpoint: EndpointSettings = Field(default_factory=lambda: EndpointSettings())
    protocol: ProtocolSettings = Field(default_factory=lambda: ProtocolSettings())
    transport: TransportSettings = Field(default_factory=lambda: TransportSettings())
    paging: PagingSettings = Field(default_factory=lambda: PagingSettings())
    server: ServerSettings = Field(default_factory=lambda: ServerSettings())

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @property
    def endpoint_url(self) -> str:
        """URL of the service for the configured environment."""
        if self.protocol.environment == "homologation":
            return self.endpoint.homologation_url
        return self.endpoint.production_url
