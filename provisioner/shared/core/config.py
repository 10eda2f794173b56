from functools import lru_cache
from threading import Lock
from typing import Optional

import structlog
from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from provisioner.shared.core.credentials import AzureCredentials
from provisioner.shared.core.exceptions import ConfigurationError

ENV_PRODUCTION = "production"
ENV_DEVELOPMENT = "development"

# Operation deadlines, matching the provider defaults for Azure resources.
DEFAULT_CREATE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_READ_TIMEOUT_SECONDS = 5 * 60
DEFAULT_UPDATE_TIMEOUT_SECONDS = 30 * 60
DEFAULT_DELETE_TIMEOUT_SECONDS = 30 * 60


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the provisioner.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "provisioner"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Service principal used by the Azure backends
    AZURE_SUBSCRIPTION_ID: Optional[str] = None
    AZURE_TENANT_ID: Optional[str] = None
    AZURE_CLIENT_ID: Optional[str] = None
    AZURE_CLIENT_SECRET: Optional[SecretStr] = None

    CREATE_TIMEOUT_SECONDS: float = DEFAULT_CREATE_TIMEOUT_SECONDS
    READ_TIMEOUT_SECONDS: float = DEFAULT_READ_TIMEOUT_SECONDS
    UPDATE_TIMEOUT_SECONDS: float = DEFAULT_UPDATE_TIMEOUT_SECONDS
    DELETE_TIMEOUT_SECONDS: float = DEFAULT_DELETE_TIMEOUT_SECONDS

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    @model_validator(mode="after")
    def validate_timeouts(self) -> "Settings":
        for key in (
            "CREATE_TIMEOUT_SECONDS",
            "READ_TIMEOUT_SECONDS",
            "UPDATE_TIMEOUT_SECONDS",
            "DELETE_TIMEOUT_SECONDS",
        ):
            if getattr(self, key) <= 0:
                raise ValueError(f"{key} must be a positive number of seconds")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == ENV_PRODUCTION

    def azure_credentials(self) -> AzureCredentials:
        """Build typed Azure credentials, failing fast on missing fields."""
        missing = [
            key
            for key in ("AZURE_SUBSCRIPTION_ID", "AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET")
            if not getattr(self, key)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing Azure settings: {', '.join(missing)}",
                details={"missing": missing},
            )
        return AzureCredentials(
            tenant_id=str(self.AZURE_TENANT_ID),
            client_id=str(self.AZURE_CLIENT_ID),
            subscription_id=str(self.AZURE_SUBSCRIPTION_ID),
            client_secret=self.AZURE_CLIENT_SECRET,
        )
