"""Configuration Manager for Supabase credentials.

This module loads the Supabase project settings the service needs to build
request-scoped clients and verify bearer tokens.

Security Impact:
    - The anon key and JWT secret are SecretStr and never logged
    - No service-role key is read: every store call runs under the caller's
      own token, so a privileged key has no place in this process
    - Configuration is validated before use (fail fast)

Architecture:
    - Infrastructure layer isolated from domain
    - Type-safe configuration using Pydantic models
    - .env files are loaded with python-dotenv for local development
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

logger = logging.getLogger(__name__)


class SupabaseConfig(BaseModel):
    """Supabase project configuration.

    Parameters:
        url: Project URL (https://<ref>.supabase.co)
        anon_key: Public anon key (SecretStr - never logged)
        jwt_secret: JWT signing secret used to verify access tokens (SecretStr)
        jwt_audience: Expected ``aud`` claim
        request_timeout: PostgREST request timeout in seconds
        store_page_size: Rows per chunk for unbounded reads
    """

    url: str = Field(..., description="Supabase project URL")
    anon_key: SecretStr = Field(..., description="Supabase anon key (secret)")
    jwt_secret: SecretStr = Field(..., description="JWT secret (secret)")
    jwt_audience: str = Field(default="authenticated", description="Expected JWT audience")
    request_timeout: float = Field(default=10.0, gt=0, description="Request timeout in seconds")
    store_page_size: int = Field(default=1000, ge=1, le=10000, description="Rows per read chunk")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate the project URL."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("Supabase URL must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("anon_key", "jwt_secret")
    @classmethod
    def validate_secret(cls, v: SecretStr) -> SecretStr:
        """Reject empty secrets."""
        if not v.get_secret_value().strip():
            raise ValueError("Secret must not be empty")
        return v


class ConfigManager:
    """Configuration manager for Supabase settings.

    Example Usage:
        ```python
        config = ConfigManager.from_environment()
        supabase_config = config.get_supabase_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary
        """
        self._config_data = config_data
        self._supabase_config: Optional[SupabaseConfig] = None

    @classmethod
    def from_environment(cls) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - SUPABASE_URL: Project URL
            - SUPABASE_ANON_KEY: Anon key (secret)
            - SUPABASE_JWT_SECRET: JWT secret (secret)
            - SUPABASE_JWT_AUDIENCE: Expected audience (default: authenticated)
            - SUPABASE_REQUEST_TIMEOUT: Request timeout in seconds (default: 10)
            - SUPABASE_STORE_PAGE_SIZE: Rows per read chunk (default: 1000)

        Returns:
            ConfigManager instance

        Security Impact:
            - Credentials are read from environment (never logged)
            - .env file is loaded if present in project root
        """
        env_path = Path(__file__).parent.parent.parent.parent / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "supabase": {
                "url": os.getenv("SUPABASE_URL"),
                "anon_key": os.getenv("SUPABASE_ANON_KEY"),
                "jwt_secret": os.getenv("SUPABASE_JWT_SECRET"),
                "jwt_audience": os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated"),
                "request_timeout": float(os.getenv("SUPABASE_REQUEST_TIMEOUT", "10")),
                "store_page_size": int(os.getenv("SUPABASE_STORE_PAGE_SIZE", "1000")),
            }
        }

        return cls(config_data)

    def get_supabase_config(self) -> SupabaseConfig:
        """Get validated Supabase configuration.

        Returns:
            SupabaseConfig instance

        Raises:
            ValueError: If required settings are missing or invalid
        """
        if self._supabase_config is None:
            supabase_data = self._config_data.get("supabase", {})
            missing = [key for key in ("url", "anon_key", "jwt_secret") if not supabase_data.get(key)]
            if missing:
                raise ValueError(f"Missing Supabase configuration: {', '.join(missing)}")
            self._supabase_config = SupabaseConfig(**supabase_data)
        return self._supabase_config

    def is_configured(self) -> bool:
        """Check whether all required Supabase settings are present and valid."""
        try:
            self.get_supabase_config()
        except ValueError:
            return False
        return True


# ============================================================================
# Convenience Functions
# ============================================================================

def get_supabase_config() -> SupabaseConfig:
    """Convenience function to get Supabase configuration from environment.

    Returns:
        SupabaseConfig instance

    Raises:
        ValueError: If required settings are missing or invalid
    """
    config_manager = ConfigManager.from_environment()
    return config_manager.get_supabase_config()
