"""Application Settings and Configuration.

This module provides application-wide settings that combine the Supabase
configuration with listing, validation and logging defaults.
"""

import os
from typing import Optional

from physio_records.infrastructure.config_manager import ConfigManager

# Application metadata
APP_NAME = "physio-records"
APP_VERSION = "1.0.0"

# Listing defaults
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_VISITS_PREVIEW = 5
MAX_VISITS_PREVIEW = 20

# Maximum parent ids per aggregate "in" filter
DEFAULT_AGGREGATE_BATCH_SIZE = 200


class Settings:
    """Application settings loaded from configuration manager and environment.

    Security Impact:
        - Supabase credentials are managed via SupabaseConfig (SecretStr)
        - Sensitive values are never exposed in logs
    """

    def __init__(self):
        """Initialize settings from environment."""
        self._config_manager: Optional[ConfigManager] = None

        self.app_name = os.getenv("PHYSIO_APP_NAME", APP_NAME)
        self.default_page_size = int(os.getenv("PHYSIO_DEFAULT_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))
        self.max_page_size = int(os.getenv("PHYSIO_MAX_PAGE_SIZE", str(MAX_PAGE_SIZE)))
        self.search_max_length = int(os.getenv("PHYSIO_SEARCH_MAX_LENGTH", "100"))
        self.visit_lookahead_days = int(os.getenv("PHYSIO_VISIT_LOOKAHEAD_DAYS", "30"))
        self.aggregate_batch_size = int(
            os.getenv("PHYSIO_AGGREGATE_BATCH_SIZE", str(DEFAULT_AGGREGATE_BATCH_SIZE))
        )

        # Logging
        self.log_level = os.getenv("PHYSIO_LOG_LEVEL", "INFO")
        self.json_logs = os.getenv("PHYSIO_JSON_LOGS", "false").lower() == "true"

        # CORS
        origins = os.getenv("PHYSIO_CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
        self.cors_origins = [origin.strip() for origin in origins.split(",") if origin.strip()]

    @property
    def config_manager(self) -> ConfigManager:
        """Configuration manager, loaded from the environment on first use."""
        if self._config_manager is None:
            self._config_manager = ConfigManager.from_environment()
        return self._config_manager


# Global settings instance
settings = Settings()
