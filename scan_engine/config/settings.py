"""
==============================================================================
Scanner Settings Module
==============================================================================

Configuration management for the scan engine using Pydantic Settings.

A single cached Settings instance is shared by the engine, the decode
backends and the HTTP surface.

Configuration Priority (highest to lowest):
------------------------------------------
1. Environment variables (prefixed with ``SCAN_``)
2. .env file
3. Default values

==============================================================================
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Module logger
logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Scan engine settings loaded from environment variables.

    Attributes:
        app_name: Display name for the service
        app_env: Environment mode (development/staging/production)
        debug: Enable debug logging
        host: Server bind address
        port: Server port number
        cors_origins: Allowed CORS origins (JSON array string)
        default_backend: Decode backend used when a client does not pick one
        domain_prefix: Two-letter prefix of warehouse codes
        min_code_length: Shortest accepted canonical code
        max_code_length: Longest accepted code for length-bounded backends
        debounce_*_ms: Repeat suppression interval per backend
        force_scan_timeout_seconds: Upper bound for a force scan
        camera_switch_grace_seconds: Pause between stop and restart on switch
        max_probe_devices: Device indices probed when sysfs is unavailable
        require_secure_context: Refuse capture for insecure client contexts
        continuous_scanning: Keep scanning after a validated result

    Example:
        >>> settings = Settings()
        >>> settings.domain_prefix
        'WH'
    """

    # =========================================================================
    # PYDANTIC SETTINGS CONFIGURATION
    # =========================================================================
    model_config = SettingsConfigDict(
        env_prefix="SCAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # APPLICATION SETTINGS
    # =========================================================================
    app_name: str = Field(
        default="Barcode Scan Engine",
        description="Display name for the service"
    )

    app_env: str = Field(
        default="development",
        description="Environment mode: development, staging, production"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode for verbose logging"
    )

    # =========================================================================
    # SERVER SETTINGS
    # =========================================================================
    host: str = Field(
        default="0.0.0.0",
        description="Server bind address"
    )

    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Server port number"
    )

    cors_origins: str = Field(
        default='["*"]',
        description="Allowed CORS origins as JSON array string"
    )

    # =========================================================================
    # DECODING SETTINGS
    # =========================================================================
    default_backend: str = Field(
        default="patch_locator",
        description="continuous, patch_locator or element_bound"
    )

    domain_prefix: str = Field(
        default="WH",
        min_length=2,
        max_length=2,
        description="Two fixed letters opening every warehouse code"
    )

    min_code_length: int = Field(
        default=8,
        ge=1,
        le=64,
        description="Shortest accepted canonical code"
    )

    max_code_length: int = Field(
        default=20,
        ge=8,
        le=128,
        description="Longest accepted code on length-bounded backends"
    )

    debounce_continuous_ms: int = Field(
        default=500,
        ge=0,
        le=10000,
        description="Repeat suppression for the continuous stream decoder"
    )

    debounce_element_ms: int = Field(
        default=500,
        ge=0,
        le=10000,
        description="Repeat suppression for the element-bound decoder"
    )

    debounce_patch_ms: int = Field(
        default=1000,
        ge=0,
        le=10000,
        description="Repeat suppression for the patch-locator decoder"
    )

    # =========================================================================
    # SESSION SETTINGS
    # =========================================================================
    force_scan_timeout_seconds: float = Field(
        default=3.0,
        gt=0,
        le=30,
        description="How long a force scan waits for a hit"
    )

    camera_switch_grace_seconds: float = Field(
        default=0.5,
        ge=0,
        le=5,
        description="Pause between releasing and reacquiring on camera switch"
    )

    max_probe_devices: int = Field(
        default=10,
        ge=1,
        le=64,
        description="Capture indices probed when device nodes are not listed"
    )

    require_secure_context: bool = Field(
        default=True,
        description="Refuse to start capture for insecure client contexts"
    )

    continuous_scanning: bool = Field(
        default=False,
        description="Keep the session streaming after a validated result"
    )

    # =========================================================================
    # VALIDATORS
    # =========================================================================
    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, value: str) -> str:
        """Normalize the environment name, defaulting unknown values."""
        valid_envs = {"development", "staging", "production"}
        normalized = value.lower().strip()

        if normalized not in valid_envs:
            logger.warning(
                f"Unknown environment '{value}', defaulting to 'development'"
            )
            return "development"

        return normalized

    @field_validator("default_backend")
    @classmethod
    def validate_default_backend(cls, value: str) -> str:
        """
        Validate the default decode backend name.

        Raises:
            ValueError: If the backend is not one of the known kinds
        """
        supported = {"continuous", "patch_locator", "element_bound"}
        normalized = value.lower().strip().replace("-", "_")

        if normalized not in supported:
            raise ValueError(
                f"Unsupported backend: {value}. "
                f"Supported: {', '.join(sorted(supported))}"
            )

        return normalized

    @field_validator("domain_prefix")
    @classmethod
    def validate_domain_prefix(cls, value: str) -> str:
        """The prefix is compared against upper-cased codes."""
        if not value.isalpha():
            raise ValueError("Domain prefix must be two letters")
        return value.upper()

    # =========================================================================
    # COMPUTED PROPERTIES
    # =========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from JSON string to list."""
        try:
            origins = json.loads(self.cors_origins)
            if isinstance(origins, list):
                return origins
            return ["*"]
        except json.JSONDecodeError:
            logger.warning(
                f"Invalid CORS origins JSON: {self.cors_origins}, "
                "defaulting to ['*']"
            )
            return ["*"]

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"Settings(app_name={self.app_name!r}, "
            f"app_env={self.app_env!r}, "
            f"default_backend={self.default_backend!r})"
        )


# =============================================================================
# SINGLETON INSTANCE MANAGEMENT
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the global Settings instance.

    Returns:
        Cached Settings instance
    """
    settings = Settings()

    if settings.debug:
        logger.info(f"Configuration loaded: {settings}")

    return settings
