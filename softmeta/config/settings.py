"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings with defaults suitable for development and tests."""

    # Database
    database_url: str = "sqlite+aiosqlite:///:memory:"
    sql_echo: bool = False  # Log every SQL statement emitted by the engine
    pool_pre_ping: bool = True

    # Filter parsing: reject unrecognised where shapes instead of
    # falling back to flat field-equality semantics
    strict_filters: bool = True

    # Environment
    environment: str = "development"
    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="SOFTMETA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def validate_production(self) -> list[str]:
        """
        Validate settings that must not keep their development values in production.
        Returns a list of problems. Empty list means all checks pass.
        """
        errors = []

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if self.database_url.startswith("sqlite"):
                errors.append("DATABASE_URL must point to a server database in production")

            if self.sql_echo:
                errors.append("SQL_ECHO must be False in production")

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
