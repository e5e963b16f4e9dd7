# Contains configuration management
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables (JSON_TO_POSTGRES_*)."""

    # Output
    default_schema: str = "public"
    default_root_table: str = "imported_data"
    wrap_in_transaction: bool = True

    # Normalization
    default_strategy: str = "partial"  # partial, full or custom
    row_id_style: str = "counter"  # counter or uuid
    adopt_source_ids: bool = True
    max_sample_values: int = 5
    max_identifier_length: int = 63  # PostgreSQL NAMEDATALEN - 1

    # Type inference
    type_sample_size: int = 1000
    type_threshold: float = 0.95

    # Batching
    max_params_per_statement: int = 32767  # hard limit is 65535
    preferred_batch_size: int = 100

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_prefix="JSON_TO_POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()
